"""
Content Resolution Engine
Decides what a screen shows right now.

Resolvers are evaluated in order and the first one producing content wins:

    emergency > scene > campaign > schedule > assigned layout > assigned playlist

A screen with nothing assigned gets an "empty" result, which is not an error.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

from flask import current_app

from models import (db, Device, Layout, LayoutZone, MediaAsset, Playlist, PlaylistItem,
                    Scene, SceneLanguageGroup, utcnow)
from utils.campaigns import select_campaign
from utils.errors import NotFound
from utils.liveness import announce_online, touch
from utils.pairing import find_device_by_otp
from utils.schedule_utils import resolve_schedule_entry

logger = logging.getLogger(__name__)

EMERGENCY_PRIORITY = 999
EMPTY_MESSAGE = 'No content assigned to this screen'


class ResolvedContent:
    """Outcome of a resolution: a playlist, a layout, or nothing"""

    def __init__(self, mode: str, source: str, playlist: Optional[Dict[str, Any]] = None,
                 items: Optional[List[Dict[str, Any]]] = None, layout: Optional[Dict[str, Any]] = None):
        self.mode = mode          # playlist, layout, empty
        self.source = source      # emergency, scene, campaign, schedule, layout, playlist, none
        self.playlist = playlist
        self.items = items or []
        self.layout = layout
        self.extra: Dict[str, Any] = {}

    @classmethod
    def empty(cls):
        result = cls('empty', 'none')
        result.extra['message'] = EMPTY_MESSAGE
        return result

    def to_dict(self, device: Device, now: Optional[datetime] = None) -> Dict[str, Any]:
        payload = {
            'mode': self.mode,
            'source': self.source,
            'device': {
                'id': device.id,
                'name': device.name,
                'tenant_id': device.tenant_id,
                'timezone': device.effective_timezone,
                'display_language': device.display_language,
            },
            'items': self.items,
            'resolved_at': (now or utcnow()).isoformat(),
        }
        if self.mode == 'playlist':
            payload['playlist'] = self.playlist
        elif self.mode == 'layout':
            payload['layout'] = self.layout
        payload.update(self.extra)
        return payload


# ============================================================================
# EXPANSION
# ============================================================================

def default_item_duration() -> int:
    return current_app.config.get('DEFAULT_ITEM_DURATION', 10)


def effective_duration(*candidates, fallback: Optional[int] = None) -> int:
    """First positive duration among the candidates, else the global default"""
    for value in candidates:
        if value is not None and value > 0:
            return value
    return fallback if fallback is not None else default_item_duration()


def media_item(media: MediaAsset, duration: int, position: int = 0, item_id=None) -> Dict[str, Any]:
    return {
        'id': item_id,
        'media_id': media.id,
        'position': position,
        'type': media.media_type,
        'name': media.name,
        'url': media.url,
        'thumbnail_url': media.thumbnail_url,
        'duration': duration,
    }


def expand_playlist(playlist: Playlist):
    """Playlist header plus items ordered by position with resolved durations"""
    items = []
    for item in playlist.items.order_by(None).order_by(PlaylistItem.position, PlaylistItem.id).all():
        if item.media is None:
            continue
        duration = effective_duration(item.duration, item.media.duration, playlist.default_duration)
        items.append(media_item(item.media, duration, item.position, item.id))

    header = {
        'id': playlist.id,
        'name': playlist.name,
        'default_duration': playlist.default_duration,
        'transition_effect': playlist.transition_effect,
        'shuffle': playlist.shuffle,
    }
    return header, items


def single_media_items(media: MediaAsset) -> List[Dict[str, Any]]:
    """A lone media item played as a one-item synthetic playlist"""
    return [media_item(media, effective_duration(media.duration))]


def expand_layout(layout: Layout) -> Dict[str, Any]:
    zones = []
    for zone in layout.zones.order_by(None).order_by(LayoutZone.z_index, LayoutZone.id).all():
        zone_payload = {
            'id': zone.id,
            'name': zone.name,
            'x': zone.x,
            'y': zone.y,
            'width': zone.width,
            'height': zone.height,
            'z_index': zone.z_index,
            'playlist': None,
            'items': [],
        }
        if zone.playlist is not None:
            zone_payload['playlist'], zone_payload['items'] = expand_playlist(zone.playlist)
        elif zone.media is not None:
            zone_payload['items'] = single_media_items(zone.media)
        zones.append(zone_payload)

    return {
        'id': layout.id,
        'name': layout.name,
        'width': layout.width,
        'height': layout.height,
        'background_color': layout.background_color,
        'zones': zones,
    }


CONTENT_MODELS = {'playlist': Playlist, 'layout': Layout, 'media': MediaAsset}


def build_content(content_type: str, content_id, tenant_id, source: str) -> Optional[ResolvedContent]:
    """Expand a (type, id) reference owned by the tenant into renderable content"""
    model = CONTENT_MODELS.get(content_type)
    if model is None or content_id is None:
        return None

    obj = db.session.get(model, content_id)
    if obj is None:
        return None
    if obj.tenant_id != tenant_id:
        logger.warning(f'Ignoring {content_type} {content_id}: not owned by tenant {tenant_id}')
        return None

    if content_type == 'layout':
        return ResolvedContent('layout', source, layout=expand_layout(obj))
    if content_type == 'playlist':
        header, items = expand_playlist(obj)
        return ResolvedContent('playlist', source, playlist=header, items=items)
    return ResolvedContent('playlist', source, playlist=None, items=single_media_items(obj))


# ============================================================================
# LANGUAGE VARIANTS
# ============================================================================

class LanguageGroupView(NamedTuple):
    """Read-only view of a scene language group"""
    default_language: str
    variants: Mapping[str, int]  # language_code -> scene id


def _normalize_language(code: Optional[str]) -> Optional[str]:
    return code.strip().lower() if code else None


def resolve_language_variant(scene_id: int, group: Optional[LanguageGroupView],
                             device_language: Optional[str]) -> int:
    """
    Pick the scene variant for the device language

    Order: exact language, the group's default language, then the requested
    scene unchanged. Never fails.
    """
    if group is None or not group.variants:
        return scene_id

    variants = {_normalize_language(code): variant_id for code, variant_id in group.variants.items()}
    language = _normalize_language(device_language)
    if language and language in variants:
        return variants[language]

    default = _normalize_language(group.default_language)
    if default in variants:
        return variants[default]
    return scene_id


def language_group_view(group: SceneLanguageGroup) -> LanguageGroupView:
    variants = {
        scene.language_code: scene.id
        for scene in group.scenes.filter(Scene.is_active.is_(True), Scene.language_code.isnot(None))
    }
    return LanguageGroupView(group.default_language, variants)


def device_language(device: Device) -> str:
    if device.display_language:
        return device.display_language
    if device.group is not None and device.group.display_language:
        return device.group.display_language
    return current_app.config.get('DEFAULT_DISPLAY_LANGUAGE', 'en')


# ============================================================================
# SCENES
# ============================================================================

def build_scene_content(scene_id, device: Device, source: str) -> Optional[ResolvedContent]:
    """Active scene, after language variant substitution, as layout or primary playlist"""
    requested = db.session.get(Scene, scene_id)
    if requested is None or not requested.is_active or requested.tenant_id != device.tenant_id:
        return None

    scene = requested
    if requested.language_group is not None:
        variant_id = resolve_language_variant(
            requested.id, language_group_view(requested.language_group), device_language(device)
        )
        scene = db.session.get(Scene, variant_id) or requested

    result = None
    if scene.layout_id is not None:
        result = build_content('layout', scene.layout_id, device.tenant_id, source)
    if result is None and scene.primary_playlist_id is not None:
        result = build_content('playlist', scene.primary_playlist_id, device.tenant_id, source)
    if result is None:
        return None

    result.extra['scene'] = {
        'id': scene.id,
        'name': scene.name,
        'requested_scene_id': requested.id,
        'language_code': scene.language_code,
        'settings': scene.settings or {},
        'secondary_playlist_id': scene.secondary_playlist_id,
    }
    return result


# ============================================================================
# RESOLVERS
# ============================================================================

class ResolutionContext:
    def __init__(self, device: Device, now: datetime, rng=None):
        self.device = device
        self.now = now
        self.rng = rng


class EmergencyResolver:
    """Tenant-wide emergency content bypasses everything else"""
    name = 'emergency'

    def resolve(self, ctx: ResolutionContext) -> Optional[ResolvedContent]:
        tenant = ctx.device.tenant
        if tenant is None or not tenant.has_active_emergency(ctx.now):
            return None

        result = build_content(tenant.emergency_content_type, tenant.emergency_content_id,
                               tenant.id, 'emergency')
        if result is None:
            logger.warning(f'Emergency content for tenant {tenant.id} could not be resolved')
            return None

        expires_at = tenant.emergency_expires_at()
        result.extra['priority'] = EMERGENCY_PRIORITY
        result.extra['emergency'] = {
            'content_type': tenant.emergency_content_type,
            'content_id': tenant.emergency_content_id,
            'started_at': tenant.emergency_started_at.isoformat() if tenant.emergency_started_at else None,
            'duration_minutes': tenant.emergency_duration_minutes,
            'expires_at': expires_at.isoformat() if expires_at else None,
        }
        return result


class SceneResolver:
    """Active scene of the device, else of its group; language variant applied"""
    name = 'scene'

    def resolve(self, ctx: ResolutionContext) -> Optional[ResolvedContent]:
        device = ctx.device
        scene_id = device.active_scene_id
        if scene_id is None and device.group is not None:
            scene_id = device.group.active_scene_id
        if scene_id is None:
            return None
        return build_scene_content(scene_id, device, 'scene')


class CampaignResolver:
    """Highest-priority live campaign targeting the device"""
    name = 'campaign'

    def resolve(self, ctx: ResolutionContext) -> Optional[ResolvedContent]:
        selection = select_campaign(ctx.device, ctx.now, ctx.rng)
        if selection is None:
            return None

        campaign, content = selection
        result = build_content(content.content_type, content.content_id, ctx.device.tenant_id, 'campaign')
        if result is None:
            return None

        result.extra['campaign'] = {
            'id': campaign.id,
            'name': campaign.name,
            'priority': campaign.priority,
            'rotation_mode': campaign.rotation_mode,
            'campaign_content_id': content.id,
        }
        return result


class ScheduleResolver:
    """Matching entry of the device's schedule, or its group's"""
    name = 'schedule'

    def resolve(self, ctx: ResolutionContext) -> Optional[ResolvedContent]:
        entry = resolve_schedule_entry(ctx.device, ctx.now)
        if entry is None:
            return None

        if entry.content_type == 'scene':
            result = build_scene_content(entry.content_id, ctx.device, 'schedule')
        else:
            result = build_content(entry.content_type, entry.content_id, ctx.device.tenant_id, 'schedule')
        if result is None:
            return None

        result.extra['schedule'] = {
            'id': entry.schedule_id,
            'entry_id': entry.id,
            'start_time': entry.start_time.strftime('%H:%M'),
            'end_time': entry.end_time.strftime('%H:%M'),
            'priority': entry.priority,
        }
        return result


class StaticResolver:
    """Assigned layout, then assigned playlist"""
    name = 'static'

    def resolve(self, ctx: ResolutionContext) -> Optional[ResolvedContent]:
        device = ctx.device
        if device.assigned_layout_id is not None:
            result = build_content('layout', device.assigned_layout_id, device.tenant_id, 'layout')
            if result is not None:
                return result
        if device.assigned_playlist_id is not None:
            return build_content('playlist', device.assigned_playlist_id, device.tenant_id, 'playlist')
        return None


RESOLVERS = (
    EmergencyResolver(),
    SceneResolver(),
    CampaignResolver(),
    ScheduleResolver(),
    StaticResolver(),
)


def resolve_for_device(device: Device, now: Optional[datetime] = None, rng=None,
                       resolvers=RESOLVERS) -> ResolvedContent:
    """Run the resolver chain without side effects"""
    ctx = ResolutionContext(device, now or utcnow(), rng)
    for resolver in resolvers:
        result = resolver.resolve(ctx)
        if result is not None:
            logger.debug(f'Device {device.id} resolved by {resolver.name} ({result.mode})')
            return result
    return ResolvedContent.empty()


def resolve_content(device_id, now=None, rng=None) -> Dict[str, Any]:
    """
    Resolve current content for a device

    Doubles as a liveness ping: last_seen / is_online are updated in the
    same transaction.

    Raises:
        NotFound: unknown or retired device
    """
    now = now or utcnow()
    device = db.session.get(Device, device_id) if device_id is not None else None
    if device is None or not device.is_active:
        raise NotFound('Device not found', action='re_pair')

    result = resolve_for_device(device, now, rng)
    came_online = touch(device, now)
    db.session.commit()

    if came_online:
        announce_online(device)

    return result.to_dict(device, now)


def resolve_content_by_otp(code, now=None, rng=None) -> Dict[str, Any]:
    """Preview content for a screen still showing its pairing code"""
    now = now or utcnow()
    device = find_device_by_otp(code, now)
    payload = resolve_for_device(device, now, rng).to_dict(device, now)
    payload['screen_id'] = device.id
    return payload
