"""
Scene language variant selection
"""
from datetime import datetime

from models import db, SceneLanguageGroup
from utils.content_resolution import LanguageGroupView, resolve_for_device, resolve_language_variant

NOW = datetime(2025, 1, 6, 12, 0, 0)

SCENE_ES = 1
SCENE_EN = 2
SCENE_DE = 3


def test_exact_language_wins():
    group = LanguageGroupView('en', {'es': SCENE_ES, 'en': SCENE_EN, 'de': SCENE_DE})
    assert resolve_language_variant(SCENE_ES, group, 'de') == SCENE_DE


def test_regional_code_falls_back_to_group_default():
    group = LanguageGroupView('de', {'es': SCENE_ES, 'en': SCENE_EN, 'de': SCENE_DE})
    assert resolve_language_variant(SCENE_ES, group, 'en-US') == SCENE_DE


def test_language_match_ignores_case():
    group = LanguageGroupView('en', {'es': SCENE_ES, 'en': SCENE_EN, 'de': SCENE_DE})
    assert resolve_language_variant(SCENE_ES, group, ' DE ') == SCENE_DE


def test_missing_language_falls_back_to_group_default():
    group = LanguageGroupView('en', {'es': SCENE_ES, 'en': SCENE_EN})
    assert resolve_language_variant(SCENE_ES, group, 'fr') == SCENE_EN


def test_no_default_variant_keeps_requested_scene():
    group = LanguageGroupView('en', {'es': SCENE_ES})
    assert resolve_language_variant(SCENE_ES, group, 'fr') == SCENE_ES


def test_no_group_keeps_requested_scene():
    assert resolve_language_variant(SCENE_ES, None, 'fr') == SCENE_ES
    assert resolve_language_variant(SCENE_ES, LanguageGroupView('en', {}), 'fr') == SCENE_ES


def test_device_resolution_uses_variant(tenant, make_device, make_media, make_playlist, make_scene):
    media = make_media()
    group = SceneLanguageGroup(tenant_id=tenant.id, name='Welcome', default_language='en')
    db.session.add(group)
    db.session.commit()

    spanish = make_scene('Bienvenidos', playlist=make_playlist('ES', [(media, None)]),
                         language_group=group, language_code='es')
    english = make_scene('Welcome', playlist=make_playlist('EN', [(media, None)]),
                         language_group=group, language_code='en')
    device = make_device(active_scene_id=spanish.id, display_language='fr')

    result = resolve_for_device(device, NOW)

    assert result.source == 'scene'
    assert result.playlist['name'] == 'EN'
    assert result.extra['scene']['id'] == english.id
    assert result.extra['scene']['requested_scene_id'] == spanish.id


def test_inactive_variant_is_skipped(tenant, make_device, make_media, make_playlist, make_scene):
    media = make_media()
    group = SceneLanguageGroup(tenant_id=tenant.id, name='Welcome', default_language='en')
    db.session.add(group)
    db.session.commit()

    spanish = make_scene('Bienvenidos', playlist=make_playlist('ES', [(media, None)]),
                         language_group=group, language_code='es')
    make_scene('Welcome', playlist=make_playlist('EN', [(media, None)]),
               language_group=group, language_code='en', is_active=False)
    device = make_device(active_scene_id=spanish.id, display_language='fr')

    assert resolve_for_device(device, NOW).extra['scene']['id'] == spanish.id
