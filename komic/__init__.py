"""Komic core package.

Modules:
- config: INI parsing and config object
- database: SQLite engine, sessions and raw connections
- models: SQLModel tables for catalog, users, groups and submissions
- repository: catalog writes (series, chapters, views, bookmarks, ratings)
- groups: scanlation group roles, permissions, membership and invites
- submissions: series/chapter submissions from groups
- moderation: admin approval workflow
- storage: local object store and WebP conversion
- sitemap: backdating sitemap generator
- ratelimit: fixed-window rate limiter
- cache: TTL cache for series URL codes
- app: FastAPI app and routing
"""
