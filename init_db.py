"""
Database Initialization Script
Run this script to create all database tables and seed a demo tenant
"""
import os
import sys
from app import create_app
from models import db, Device, MediaAsset, Playlist, PlaylistItem, Tenant


def seed_demo_data():
    """Demo tenant with one unpaired screen showing a one-item playlist"""
    tenant = Tenant(name='Demo Tenant', display_language='en')
    db.session.add(tenant)
    db.session.flush()

    media = MediaAsset(
        tenant_id=tenant.id,
        name='Welcome slide',
        media_type='image',
        url='https://example.com/media/welcome.png',
        duration=15
    )
    playlist = Playlist(tenant_id=tenant.id, name='Welcome loop', default_duration=10)
    db.session.add_all([media, playlist])
    db.session.flush()
    db.session.add(PlaylistItem(playlist_id=playlist.id, media_id=media.id, position=0))

    device = Device(tenant_id=tenant.id, name='Demo Screen', assigned_playlist_id=playlist.id)
    db.session.add(device)
    return tenant, device


def init_database(app=None, seed=None):
    """Initialize database with tables and, in development, demo data"""

    app = app or create_app()
    if seed is None:
        seed = os.getenv('FLASK_ENV', 'development') == 'development'

    with app.app_context():
        # Drop all tables (use with caution in production!)
        print("Dropping existing tables...")
        db.drop_all()

        print("Creating database tables...")
        db.create_all()

        device = None
        if seed:
            print("Adding demo data...")
            _, device = seed_demo_data()

        db.session.commit()

        print("\n" + "=" * 50)
        print("Database initialized successfully!")
        print("=" * 50)
        if device is not None:
            print(f"\nDemo screen id: {device.id}")
            print("Issue a pairing code with POST /api/admin/devices/<id>/pairing-code")
        print("=" * 50 + "\n")
        return device.id if device is not None else None


if __name__ == '__main__':
    confirm = input("This will delete all existing data. Continue? (yes/no): ")
    if confirm.lower() == 'yes':
        init_database()
    else:
        print("Database initialization cancelled.")
        sys.exit(0)
