"""
Feed Bot - Cross-Chain Pool Price Feeds

This module keeps custom price feeds on the destination network current:
- Feed: Feed metadata and topology (native, direct, relay)
- FeedScheduler: Round-robin timer loop with a single-flight lock
- FeedUpdater: Per-feed update flow for every topology
- AttestationClient: Verifier, hub, relay and DA layer round trip
- ProofAssembler: Typed decoding and validation of attestation proofs
- UpdateSubmitter: Writes to destination programs
- RelayRules: Relay protocol invariants and the local relay ledger
- BotStats: Event log, status notifier and counters
- readers: Price source readers per feed topology
"""

from .AttestationClient import AttestationClient, AttestationEndpoints
from .BotStats import BotStats, BotStatus, EventLog, LogEntry
from .Config import BotConfig
from .Feed import Feed, FeedCategory
from .FeedScheduler import FeedScheduler
from .FeedStore import FileFeedStore, HttpFeedStore
from .FeedUpdater import FeedUpdater, FeedUpdateResult
from .ProofAssembler import AttestationProof, assemble_proof
from .RelayRules import RelayLedger
from .UpdateSubmitter import UpdateSubmitter

__all__ = [
    "AttestationClient",
    "AttestationEndpoints",
    "AttestationProof",
    "BotConfig",
    "BotStats",
    "BotStatus",
    "EventLog",
    "Feed",
    "FeedCategory",
    "FeedScheduler",
    "FeedUpdateResult",
    "FeedUpdater",
    "FileFeedStore",
    "HttpFeedStore",
    "LogEntry",
    "RelayLedger",
    "UpdateSubmitter",
    "assemble_proof",
]
