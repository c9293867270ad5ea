"""Ticket status workflow: FSM, broadcaster, and engine facade."""
