"""
connectors — provider integration module.

Provides:
  • A generic request engine with retry, backoff and token refresh
  • Single-flight refresh coordination through the store
  • One capability record per provider (Google, Facebook, Outlook,
    Meetup, Trello, Todoist, Wunderlist, Eventbrite, GitHub)
  • Fernet encryption of tokens at rest
  • Source lifecycle: link, validate, revoke
"""
