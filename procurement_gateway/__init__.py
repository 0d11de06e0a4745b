"""Procurement request gateway for the IMS (Aras Innovator) server."""
