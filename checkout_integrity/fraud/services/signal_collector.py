"""
Signal collectors - each one looks at a single fraud vector.

Collectors are plain functions. Only the velocity collector touches shared
state (the velocity store); the rest are pure. Missing optional input is
not an error: the collector just returns no signal for that dimension.
"""

import re
from typing import Iterable, List, Optional, Sequence

from ...pipeline.checksum import order_events
from ...pipeline.events import PipelineEvent, PipelineStep
from ...utils.clock import to_epoch_ms
from ...utils.rounding import round_half_up
from ..models import (
    DEFAULT_SIGNAL_WEIGHTS,
    DeviceFingerprint,
    KeyType,
    RiskSignal,
    SignalWeights,
    TimingThresholds,
    VelocityLimits,
    create_risk_signal,
)
from .velocity_store import VelocityStorage

CHAIN_HASH_MUTATION_SCORE = 80
GEO_MISMATCH_SCORE = 40

HEADLESS_RENDERER_PATTERN = re.compile(r"swiftshader|mesa|llvmpipe", re.IGNORECASE)
MOBILE_UA_PATTERN = re.compile(r"mobile|android|iphone", re.IGNORECASE)
FIREFOX_UA_PATTERN = re.compile(r"firefox", re.IGNORECASE)
MAX_PLAUSIBLE_CORES = 32

_DEFAULT_LIMITS = VelocityLimits()
_DEFAULT_TIMING = TimingThresholds()


async def collect_velocity_signals(
    session_id: str,
    velocity_store: VelocityStorage,
    email: Optional[str] = None,
    ip: Optional[str] = None,
    device_hash: Optional[str] = None,
    limits: VelocityLimits = _DEFAULT_LIMITS,
    weights: SignalWeights = DEFAULT_SIGNAL_WEIGHTS,
) -> List[RiskSignal]:
    """
    Record this session against each supplied key, then read the window back.

    Store failures propagate: skipping velocity would understate risk.
    """
    signals = []
    checks = (
        (email, KeyType.EMAIL),
        (ip, KeyType.IP),
        (device_hash, KeyType.DEVICE),
    )

    for key, key_type in checks:
        if not key:
            continue

        await velocity_store.record(key, key_type, session_id)
        record = await velocity_store.get(key, key_type)
        if record is None:
            continue

        threshold = limits.threshold_for(key_type)
        if record.count > threshold:
            name = f"velocity_{key_type.value}"
            signals.append(create_risk_signal(
                name,
                score=min(100, 20 + (record.count - threshold) * 15),
                reason=(
                    f'{key_type.value} "{key}" has {record.count} sessions in window '
                    f"(threshold: {threshold})"
                ),
                weights=weights,
                metadata={
                    "key": key,
                    "key_type": key_type.value,
                    "count": record.count,
                    "threshold": threshold,
                },
            ))

    return signals


def collect_timing_signals(
    events: Iterable[PipelineEvent],
    thresholds: TimingThresholds = _DEFAULT_TIMING,
    weights: SignalWeights = DEFAULT_SIGNAL_WEIGHTS,
) -> List[RiskSignal]:
    """Too fast looks like a bot, too slow looks like a hijacked session."""
    ordered = order_events(events)
    if len(ordered) < 2:
        return []

    duration_ms = to_epoch_ms(ordered[-1].timestamp) - to_epoch_ms(ordered[0].timestamp)
    too_fast, too_slow = thresholds.too_fast_ms, thresholds.too_slow_ms
    signals = []

    if duration_ms < too_fast:
        signals.append(create_risk_signal(
            "timing_too_fast",
            score=min(100, 60 + round_half_up((1 - duration_ms / too_fast) * 40)),
            reason=f"Checkout completed in {duration_ms}ms (threshold: {too_fast}ms), possible bot",
            weights=weights,
            metadata={"duration_ms": duration_ms, "threshold_ms": too_fast},
        ))

    if duration_ms > too_slow:
        signals.append(create_risk_signal(
            "timing_too_slow",
            score=min(100, 30 + round_half_up((duration_ms - too_slow) / too_slow * 30)),
            reason=(
                f"Checkout took {round_half_up(duration_ms / 1000)}s "
                f"(threshold: {too_slow // 1000}s), possible session hijack"
            ),
            weights=weights,
            metadata={"duration_ms": duration_ms, "threshold_ms": too_slow},
        ))

    return signals


def collect_chain_hash_mutation_signals(
    current_chain_hash: str,
    previous_chain_hash: Optional[str] = None,
    events: Sequence[PipelineEvent] = (),
    weights: SignalWeights = DEFAULT_SIGNAL_WEIGHTS,
) -> List[RiskSignal]:
    """The chain hash moved between two assessments of the same checkout."""
    if not previous_chain_hash or previous_chain_hash == current_chain_hash:
        return []

    return [create_risk_signal(
        "chain_hash_mutation",
        score=CHAIN_HASH_MUTATION_SCORE,
        reason="Chain hash changed mid-checkout: input data was mutated after initial validation",
        weights=weights,
        metadata={
            "previous_hash": previous_chain_hash,
            "current_hash": current_chain_hash,
            "event_count": len(events),
        },
    )]


def collect_input_mutation_signals(
    events: Iterable[PipelineEvent],
    weights: SignalWeights = DEFAULT_SIGNAL_WEIGHTS,
) -> List[RiskSignal]:
    """Buyer data validated more than once with different content."""
    checksums = []
    for event in order_events(events):
        if event.step == PipelineStep.BUYER_VALIDATED and event.input_checksum:
            if event.input_checksum not in checksums:
                checksums.append(event.input_checksum)

    if len(checksums) <= 1:
        return []

    return [create_risk_signal(
        "input_mutation",
        score=min(100, 30 + len(checksums) * 10),
        reason=(
            f"Buyer data changed {len(checksums)} times during checkout, "
            "possible session manipulation"
        ),
        weights=weights,
        metadata={"mutation_count": len(checksums), "checksums": checksums},
    )]


def collect_geo_mismatch_signals(
    billing_country: Optional[str] = None,
    ip_country: Optional[str] = None,
    weights: SignalWeights = DEFAULT_SIGNAL_WEIGHTS,
) -> List[RiskSignal]:
    if not billing_country or not ip_country:
        return []
    if billing_country.upper() == ip_country.upper():
        return []

    return [create_risk_signal(
        "geo_mismatch",
        score=GEO_MISMATCH_SCORE,
        reason=f"Billing country ({billing_country}) does not match IP country ({ip_country})",
        weights=weights,
        metadata={"billing_country": billing_country, "ip_country": ip_country},
    )]


def find_device_anomalies(fingerprint: DeviceFingerprint) -> List[str]:
    """Known automation tells present in a fingerprint."""
    anomalies = []
    user_agent = fingerprint.user_agent

    if fingerprint.webgl_renderer and HEADLESS_RENDERER_PATTERN.search(fingerprint.webgl_renderer):
        anomalies.append(f"Suspicious WebGL renderer: {fingerprint.webgl_renderer}")

    if user_agent and MOBILE_UA_PATTERN.search(user_agent) and fingerprint.max_touch_points == 0:
        anomalies.append("Mobile user agent but zero touch points (emulated device)")

    if fingerprint.plugin_count == 0 and user_agent and not FIREFOX_UA_PATTERN.search(user_agent):
        anomalies.append("No browser plugins detected, possible headless browser")

    if fingerprint.hardware_concurrency and fingerprint.hardware_concurrency > MAX_PLAUSIBLE_CORES:
        anomalies.append(f"Unusual hardware concurrency: {fingerprint.hardware_concurrency}")

    return anomalies


def collect_device_anomaly_signals(
    fingerprint: Optional[DeviceFingerprint] = None,
    weights: SignalWeights = DEFAULT_SIGNAL_WEIGHTS,
) -> List[RiskSignal]:
    if fingerprint is None:
        return []

    anomalies = find_device_anomalies(fingerprint)
    if not anomalies:
        return []

    return [create_risk_signal(
        "device_anomaly",
        score=min(100, 20 + len(anomalies) * 20),
        reason="; ".join(anomalies),
        weights=weights,
        metadata={
            "anomalies": anomalies,
            "fingerprint": fingerprint.model_dump(exclude_none=True),
        },
    )]
