"""
Campaign Selection
Eligibility, content rotation and frequency caps for campaign overrides
"""
import logging
import random
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, or_, select

from models import db, Campaign, CampaignContent, CampaignTarget, Device, TelemetryEvent, utcnow

logger = logging.getLogger(__name__)

ROTATION_MODES = ('weight', 'percentage', 'sequence', 'random')
PLAYBACK_EVENT = 'playback'


def eligible_campaigns(device: Device, now: Optional[datetime] = None) -> List[Campaign]:
    """
    Live campaigns of the device's tenant targeting the device, its group,
    its location or all screens; highest priority first, newest first on ties
    """
    now = now or utcnow()

    target_filters = [
        CampaignTarget.target_type == 'all',
        and_(CampaignTarget.target_type == 'screen', CampaignTarget.target_id == device.id),
    ]
    if device.group_id is not None:
        target_filters.append(
            and_(CampaignTarget.target_type == 'screen_group', CampaignTarget.target_id == device.group_id)
        )
    location_id = device.location_id
    if location_id is None and device.group is not None:
        location_id = device.group.location_id
    if location_id is not None:
        target_filters.append(
            and_(CampaignTarget.target_type == 'location', CampaignTarget.target_id == location_id)
        )

    targeted = select(CampaignTarget.campaign_id).where(or_(*target_filters))

    return Campaign.query.filter(
        Campaign.tenant_id == device.tenant_id,
        Campaign.is_active.is_(True),
        or_(Campaign.start_at.is_(None), Campaign.start_at <= now),
        or_(Campaign.end_at.is_(None), Campaign.end_at >= now),
        Campaign.id.in_(targeted)
    ).order_by(Campaign.priority.desc(), Campaign.created_at.desc(), Campaign.id.desc()).all()


# ============================================================================
# FREQUENCY CAPS
# ============================================================================

def play_count(device_id, since: datetime, campaign_id=None, campaign_content_id=None) -> int:
    """Playback reports from a device since the given time"""
    query = TelemetryEvent.query.filter(
        TelemetryEvent.device_id == device_id,
        TelemetryEvent.event_type == PLAYBACK_EVENT,
        TelemetryEvent.recorded_at >= since
    )
    if campaign_id is not None:
        query = query.filter(TelemetryEvent.campaign_id == campaign_id)
    if campaign_content_id is not None:
        query = query.filter(TelemetryEvent.campaign_content_id == campaign_content_id)
    return query.count()


def within_caps(max_per_hour, max_per_day, counter: Callable[[datetime], int], now: datetime) -> bool:
    if max_per_hour is not None and counter(now - timedelta(hours=1)) >= max_per_hour:
        return False
    if max_per_day is not None and counter(now - timedelta(days=1)) >= max_per_day:
        return False
    return True


# ============================================================================
# ROTATION
# ============================================================================

def weighted_pick(candidates: Sequence, weight_of: Callable, rng=None):
    """
    Cumulative-weight random selection in candidate order
    Null weight counts as 1, zero or negative weight excludes the item,
    a single remaining candidate is returned without drawing
    """
    weighted = []
    for candidate in candidates:
        weight = weight_of(candidate)
        if weight is None:
            weight = 1
        if weight > 0:
            weighted.append((candidate, weight))

    if not weighted:
        return None
    if len(weighted) == 1:
        return weighted[0][0]

    rng = rng or random
    total = sum(weight for _, weight in weighted)
    point = rng.random() * total
    cumulative = 0
    for candidate, weight in weighted:
        cumulative += weight
        if cumulative > point:
            return candidate
    return weighted[-1][0]


def _last_played_content_id(device_id, campaign_id) -> Optional[int]:
    event = TelemetryEvent.query.filter(
        TelemetryEvent.device_id == device_id,
        TelemetryEvent.event_type == PLAYBACK_EVENT,
        TelemetryEvent.campaign_id == campaign_id,
        TelemetryEvent.campaign_content_id.isnot(None)
    ).order_by(TelemetryEvent.recorded_at.desc(), TelemetryEvent.id.desc()).first()
    return event.campaign_content_id if event else None


def next_in_sequence(candidates: Sequence[CampaignContent], all_contents: Sequence[CampaignContent],
                     last_played_id: Optional[int]) -> Optional[CampaignContent]:
    """Item following the last played one in position order, wrapping around"""
    if not candidates:
        return None
    if last_played_id is None:
        return candidates[0]

    order = [c.id for c in all_contents]
    if last_played_id not in order:
        return candidates[0]

    start = order.index(last_played_id)
    available = {c.id: c for c in candidates}
    for offset in range(1, len(order) + 1):
        content_id = order[(start + offset) % len(order)]
        if content_id in available:
            return available[content_id]
    return None


def select_campaign_content(campaign: Campaign, device: Device, now: Optional[datetime] = None,
                            rng=None) -> Optional[CampaignContent]:
    """Pick the content to show for a campaign, honouring caps and rotation mode"""
    now = now or utcnow()

    if not within_caps(campaign.max_plays_per_hour, campaign.max_plays_per_day,
                       lambda since: play_count(device.id, since, campaign_id=campaign.id), now):
        logger.debug(f'Campaign {campaign.id} capped for device {device.id}')
        return None

    contents = campaign.contents.order_by(CampaignContent.position, CampaignContent.id).all()
    candidates = [
        content for content in contents
        if within_caps(content.max_plays_per_hour, content.max_plays_per_day,
                       lambda since, c=content: play_count(device.id, since, campaign_content_id=c.id), now)
    ]
    if not candidates:
        return None

    mode = campaign.rotation_mode or 'weight'
    if mode == 'sequence':
        return next_in_sequence(candidates, contents, _last_played_content_id(device.id, campaign.id))
    if mode == 'random':
        return (rng or random).choice(candidates)
    if mode == 'percentage' and any(c.rotation_percentage is not None for c in candidates):
        return weighted_pick(candidates, lambda c: c.rotation_percentage or 0, rng)
    return weighted_pick(candidates, lambda c: c.weight, rng)


def select_campaign(device: Device, now: Optional[datetime] = None,
                    rng=None) -> Optional[Tuple[Campaign, CampaignContent]]:
    """
    Winning campaign and its selected content for the device
    A campaign with nothing playable (capped or empty) yields to the next one
    """
    now = now or utcnow()
    for campaign in eligible_campaigns(device, now):
        content = select_campaign_content(campaign, device, now, rng)
        if content is not None:
            return campaign, content
    return None


def campaign_status_for(campaign: Campaign, now: datetime) -> str:
    if not campaign.is_active:
        return 'paused' if campaign.status in ('scheduled', 'active') else campaign.status
    if campaign.start_at is not None and now < campaign.start_at:
        return 'scheduled'
    if campaign.end_at is not None and now > campaign.end_at:
        return 'completed'
    return 'active'


def update_campaign_statuses(now: Optional[datetime] = None) -> int:
    """Bring stored campaign statuses in line with their windows; drafts are left alone"""
    now = now or utcnow()
    changed = 0
    for campaign in Campaign.query.filter(Campaign.status != 'draft').all():
        status = campaign_status_for(campaign, now)
        if status != campaign.status:
            campaign.status = status
            changed += 1
    db.session.commit()
    if changed:
        logger.info(f'Updated status of {changed} campaign(s)')
    return changed
