"""Conferencing backend integration -- BigBlueButton API client and response schemas."""
