#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
__author__ = 'Konstantin Ryabitsev <konstantin@linuxfoundation.org>'

import mailseries
import mailseries.compose

from typing import Tuple, List

logger = mailseries.logger

SEND_ALIAS = 'send-mbox'


def check_delivery() -> None:
    config = mailseries.get_main_config()
    if config.get('sendendpoint'):
        return
    if not mailseries.git_get_config(None, f'alias.{SEND_ALIAS}'):
        raise mailseries.PreconditionError("Need an '%s' alias" % SEND_ALIAS)


def sign_messages(messages: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
    import patatt
    signed = list()
    for separator, msg in messages:
        try:
            bdata = patatt.rfc2822_sign(msg.encode())
        except patatt.NoKeyError:
            raise mailseries.PreconditionError('No signing key configured, run "patatt genkey" '
                                               'or configure "user.signingKey" to use PGP')
        except patatt.SigningError as ex:
            raise mailseries.DeliveryError('Failure trying to patatt-sign: %s' % str(ex))
        signed.append((separator, bdata.decode()))
    return signed


def send_to_endpoint(endpoint: str, messages: List[str]) -> int:
    logger.info('Sending via web endpoint %s', endpoint)
    req = {
        'action': 'receive',
        'messages': messages,
    }
    ses = mailseries.get_requests_session()
    res = ses.post(endpoint, json=req)
    try:
        rdata = res.json()
    except ValueError:
        raise mailseries.DeliveryError('Odd response from the endpoint: %s' % res.text)

    if rdata.get('result') == 'success':
        return len(messages)
    if rdata.get('result') == 'error':
        raise mailseries.DeliveryError('Error from endpoint: %s' % rdata.get('message'))
    raise mailseries.DeliveryError('Odd response from the endpoint: %s' % res.text)


def send_document(text: str) -> int:
    config = mailseries.get_main_config()
    doc = mailseries.compose.PatchDocument(text)
    messages = doc.get_messages()
    if not messages:
        raise mailseries.DocumentError('Nothing to send')
    if config.get('patattsign', '').lower() in {'yes', 'true', 'y'}:
        logger.info('Signing %s messages', len(messages))
        messages = sign_messages(messages)
        text = '\n'.join('%s\n%s' % (separator, msg) for separator, msg in messages)

    endpoint = config.get('sendendpoint')
    if endpoint:
        return send_to_endpoint(endpoint, [x[1] for x in messages])

    logger.info('Calling the `%s` alias', SEND_ALIAS)
    mailseries.git_get_output([SEND_ALIAS], stdin=text)
    return len(messages)
