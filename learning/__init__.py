"""
Learning Progress Package

Session lifecycle, debounced persistence and durable statistics for practice runs.
"""

from .models import Aggregate, Difficulty, LiveCounters, MergeRequest, Session, SessionHistoryRecord, SessionSnapshot
from .statistics import LearningStatistics, get_statistics
from .store import AggregateStore, AggregateStoreClient, AuthContext
from .debounced_writer import DebouncedWriter
from .statistics_reader import ReaderState, StatisticsReader
from .session_manager import SessionLifecycleManager

__all__ = [
    'Aggregate',
    'AggregateStore',
    'AggregateStoreClient',
    'AuthContext',
    'DebouncedWriter',
    'Difficulty',
    'LearningStatistics',
    'LiveCounters',
    'MergeRequest',
    'ReaderState',
    'Session',
    'SessionHistoryRecord',
    'SessionLifecycleManager',
    'SessionSnapshot',
    'StatisticsReader',
    'get_statistics',
]
