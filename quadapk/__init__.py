#
# Copyright 2024 quadapk Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

"""Build rust bin and example targets into Android APKs."""

__version__ = "0.1.0"
