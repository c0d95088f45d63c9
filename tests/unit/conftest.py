"""Unit test configuration.

Unit tests run without redis, postgres or provider endpoints; stores are
in memory and outbound HTTP goes through respx.
"""

import pytest


pytestmark = pytest.mark.unit
