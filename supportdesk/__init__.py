"""SupportDesk: multi-tenant customer-support ticketing API."""
