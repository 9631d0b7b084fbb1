"""Diary, calendar and AI chat services built on the query cache."""
