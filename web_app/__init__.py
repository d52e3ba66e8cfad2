"""Flask + Socket.IO front end for the evidence workflow."""
