class CacheError(RuntimeError):
	"""Base exception for cache-related errors."""


class InvalidKeyError(CacheError, ValueError):
	"""Raised when a cache key is empty or contains reserved characters."""

	def __init__(self, message: str, key: object = None) -> None:
		super().__init__(message)
		self.key = key


class NoDriverAvailableError(CacheError):
	"""Raised when no usable backend can be resolved for a namespace."""


class CacheConfigError(CacheError):
	"""
	Raised when there is a configuration error in the cache setup.
	"""


__all__ = [
	"CacheError",
	"InvalidKeyError",
	"NoDriverAvailableError",
	"CacheConfigError",
]
