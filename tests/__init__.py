"""
Localization core test suite

Structure:
- unit/: Unit tests for individual components
- integration/: End-to-end localization on synthetic images
- conftest.py: shared synthetic image fixtures
"""
