"""
Scheduling Domain

Teacher-published time slots, student bookings and the change-request
workflow, shared live between clients over the ``/ws`` push channel.

- slot_service.py     Slot lifecycle (add, delete, book, confirm)
- request_service.py  Request workflow (submit, approve with swap, reject)
- broadcast.py        Connection registry and full-state broadcasting
- commands.py         Command table, payload validation, acknowledgements
- router.py           ``/ws`` channel and read-only REST views
"""
