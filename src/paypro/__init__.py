# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from .__info__ import __version__
from .messages import Output, Payment, PaymentACK, PaymentDetails, PaymentRequest

__all__ = 'Output', 'Payment', 'PaymentACK', 'PaymentDetails', 'PaymentRequest', '__version__'
