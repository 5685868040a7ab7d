import hashlib


def content_hash(data: bytes) -> str:
	"""SHA-256 hex digest of a file's bytes; the fingerprint stored as `fileHash`."""
	return hashlib.sha256(data).hexdigest()
