"""Run notifications: event types, sinks, and the event bus."""
