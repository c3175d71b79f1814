from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest


#============================================
class FakeClock:
	"""
	Controllable UTC clock injected into cache managers.
	"""

	def __init__(self, start: datetime | None = None):
		self.now = start or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

	def __call__(self) -> datetime:
		return self.now

	def advance(self, **kwargs) -> None:
		self.now = self.now + timedelta(**kwargs)


#============================================
@pytest.fixture
def clock() -> FakeClock:
	return FakeClock()
