"""Delta layer for kubesync.

Turns raw informer events into minimal, rate-limited change batches and
routes them to the UI transport.

Submodules:
    sanitize    -- strips server-churned metadata before caching or diffing.
    diff        -- structural diff producing JSON-Patch style operations.
    calculator  -- DeltaCalculator: per (context, resource type) diff + batching.
    pusher      -- DeltaPusher: event routing and push-sink delivery.
"""

from kubesync.delta.calculator import DeltaCalculator
from kubesync.delta.pusher import DELTA_BATCH_CHANNEL, DeltaPusher, PushSink, StreamSink

__all__ = ["DELTA_BATCH_CHANNEL", "DeltaCalculator", "DeltaPusher", "PushSink", "StreamSink"]
