"""Slack bot that keeps Trello usernames in sync and nags about late cards."""
