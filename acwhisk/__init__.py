"""AC Whisk session and identity synchronization core."""
