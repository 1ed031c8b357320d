"""Hierarchical metrics for devloop.

The scope store aggregates counters, tokens and timings for tasks, phases,
PRDs and PRD sets. History buffers keep bounded windows of the signals the
detectors watch.
"""

from devloop.metrics.aggregates import Counters, Outcome, TimingTotals, TokenTotals
from devloop.metrics.categories import CategoryName, CategoryRecords, TimingCategory, TokenFeature
from devloop.metrics.history import HistoryBuffer, HistoryBuffers, HistorySample, StreamId
from devloop.metrics.pricing import PricingFn, StaticPricing
from devloop.metrics.recorder import MetricsRecorder
from devloop.metrics.scope import Scope, ScopeKind, ScopeRef, ScopeStatus, StoreSnapshot
from devloop.metrics.store import ScopeStore

__all__ = [
    "CategoryName",
    "CategoryRecords",
    "Counters",
    "HistoryBuffer",
    "HistoryBuffers",
    "HistorySample",
    "MetricsRecorder",
    "Outcome",
    "PricingFn",
    "Scope",
    "ScopeKind",
    "ScopeRef",
    "ScopeStatus",
    "ScopeStore",
    "StaticPricing",
    "StoreSnapshot",
    "StreamId",
    "TimingCategory",
    "TimingTotals",
    "TokenFeature",
    "TokenTotals",
]
