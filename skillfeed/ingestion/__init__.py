"""
SkillFeed Ingestion Module
==========================

Page fetching and article intake.

This module handles:
- HTTP fetching and headless browser rendering
- RSS/Atom feed parsing
- HTML cleaning and text extraction
- Deduplicating article ingestion
"""
