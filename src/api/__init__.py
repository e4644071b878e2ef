"""
Review Synthesis API
====================

FastAPI surface over the synthesis engine. The application is built by
src.api.main.create_app().
"""
