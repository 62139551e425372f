"""
Built-in sites and visits loaded by scripts/seed_fixtures.py.

Seeded rows are created synced and can never be edited or deleted.
"""

SITES = [
    {"id": "site_01", "name": "Bhadla Solar Park", "latitude": 27.5362, "longitude": 71.9167, "capacity": "2245 MW"},
    {"id": "site_02", "name": "Pavagada Solar Park", "latitude": 14.1666, "longitude": 77.4333, "capacity": "2050 MW"},
    {"id": "site_03", "name": "Kurnool Ultra Mega Solar Park", "latitude": 15.6815, "longitude": 78.1516, "capacity": "1000 MW"},
    {"id": "site_04", "name": "Rewa Ultra Mega Solar Park", "latitude": 24.5204, "longitude": 81.2979, "capacity": "750 MW"},
]

# Spaced well beyond the conflict buffer for the same technician
SCHEDULE = [
    {"id": "visit_101", "site_id": "site_01", "date": "2025-03-01", "time": "09:00 AM", "title": "Quarterly Inspection"},
    {"id": "visit_102", "site_id": "site_02", "date": "2025-03-01", "time": "11:00 AM", "title": "Inverter Maintenance"},
    {"id": "visit_103", "site_id": "site_03", "date": "2025-03-01", "time": "02:00 PM", "title": "Panel Cleaning"},
    {"id": "visit_104", "site_id": "site_04", "date": "2025-03-02", "time": "09:30 AM", "title": "Performance Analysis"},
    {"id": "visit_105", "site_id": "site_01", "date": "2025-03-02", "time": "01:00 PM", "title": "Safety Audit"},
]
