"""
auth — User authentication module.

Provides:
  • Signed session tokens, revocable through the store
  • Login-or-link of a provider account (``save_token``)
  • Logout API route
  • ``get_current_session`` FastAPI dependency
"""
