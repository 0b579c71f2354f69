"""
Bracket engine services.

- bracket_generator, standings: pure functions, no I/O
- tournament_state_machine, match_progression, advancement_service: lifecycle
  and results, always read-modify-write through the persistence gateway
- timer_scheduler: deferred registration-close and start events
- persistence_gateway, notification_gateway: the collaborators the engine consumes
- None of them depend on HTTP request/response objects
"""
