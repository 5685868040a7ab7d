import pymongo
from beanie import Document

from .schemas import FileRecord


class FileDAO(FileRecord, Document):
	class Settings:
		name = "files"
		indexes = [
			pymongo.IndexModel([("fileId", pymongo.ASCENDING)], unique=True),
			pymongo.IndexModel(
				[("mimeType", pymongo.ASCENDING), ("isActive", pymongo.ASCENDING)]
			),
			pymongo.IndexModel([("communityId", pymongo.ASCENDING)]),
			pymongo.IndexModel([("indexingError", pymongo.ASCENDING)]),
		]
