"""
Delivery Scout Django application.

This app discovers venues selling tracked products on food-delivery
platforms, extracts their menus and tunes search strategies from feedback.
"""
