"""Services: models, money helpers, repositories, domain ledgers and alerts."""
