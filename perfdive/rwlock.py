"""
Reader/writer lock for in-memory cache state.
"""

import contextlib
import threading


#============================================
class ReadWriteLock:
	"""
	Many concurrent readers or one writer; waiting writers block new readers.
	"""

	def __init__(self):
		self._condition = threading.Condition(threading.Lock())
		self._active_readers = 0
		self._writer_active = False
		self._writers_waiting = 0

	#============================================
	def acquire_read(self) -> None:
		with self._condition:
			while self._writer_active or self._writers_waiting > 0:
				self._condition.wait()
			self._active_readers += 1

	#============================================
	def release_read(self) -> None:
		with self._condition:
			self._active_readers -= 1
			if self._active_readers == 0:
				self._condition.notify_all()

	#============================================
	def acquire_write(self) -> None:
		with self._condition:
			self._writers_waiting += 1
			while self._writer_active or self._active_readers > 0:
				self._condition.wait()
			self._writers_waiting -= 1
			self._writer_active = True

	#============================================
	def release_write(self) -> None:
		with self._condition:
			self._writer_active = False
			self._condition.notify_all()

	#============================================
	@contextlib.contextmanager
	def read_locked(self):
		self.acquire_read()
		try:
			yield
		finally:
			self.release_read()

	#============================================
	@contextlib.contextmanager
	def write_locked(self):
		self.acquire_write()
		try:
			yield
		finally:
			self.release_write()
