# db/ - Local SQLite persistence
from db.connection import Database
from db.progress import SqliteAggregateStore
