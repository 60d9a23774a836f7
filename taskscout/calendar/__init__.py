"""Google Calendar integration.

    GoogleCalendarClient   → OAuth + Calendar v3 REST (httpx)
    CredentialManager      → encrypted token storage, 5-minute refresh buffer
    CalendarSyncEngine     → full / incremental mirror into storage
    WebhookManager         → push channel register / renew / stop / deliveries
    MeetingPrepAutomation  → prep tasks for upcoming external meetings
    CalendarConnection     → per-owner facade used by the API and CLI
"""
