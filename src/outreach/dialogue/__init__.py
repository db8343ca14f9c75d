"""DTMF questionnaire flow."""
