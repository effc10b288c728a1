"""Sync pipeline services."""

from tunesync.services.availability import AvailabilityGate, database_probe
from tunesync.services.cache_store import LocalCache
from tunesync.services.fallback import ErrorClass, FallbackOrchestrator, FallbackResult, classify_error
from tunesync.services.spotify_auth import SpotifyAuthClient, TokenGrant
from tunesync.services.token_provider import TokenProvider
from tunesync.services.spotify_client import SpotifyClient
from tunesync.services.profile_aggregator import ProfileAggregator
from tunesync.services.sync_engine import SyncEngine
from tunesync.services.analysis_service import AnalysisService

__all__ = [
    'AvailabilityGate',
    'database_probe',
    'LocalCache',
    'ErrorClass',
    'FallbackOrchestrator',
    'FallbackResult',
    'classify_error',
    'SpotifyAuthClient',
    'TokenGrant',
    'TokenProvider',
    'SpotifyClient',
    'ProfileAggregator',
    'SyncEngine',
    'AnalysisService'
]
