from typing import Any, Dict, List

MARKUP_PERCENTAGE = 0.5
CANCELLATION_FEE_RATIO = 0.5
CUSTOM_SERVICE_ID = "custom-request"

LOCATIONS = [
    "Beirut (Central)",
    "Beirut (Hamra)",
    "Beirut (Ashrafieh)",
    "Jal El Dib",
    "Antelias",
    "Jounieh",
    "Byblos",
    "Zahle",
    "Tripoli",
    "Saida",
    "Tyre",
]

CANCELLATION_REASONS = [
    "Issue resolved independently",
    "Parent no longer available at this time",
    "Change of plans",
    "Technical error in request",
    "Other (Specify)",
]

SERVICE_TYPES: List[Dict[str, Any]] = [
    {
        "id": "solar-check",
        "category": "POWER/SOLAR",
        "title": "Battery Health Check",
        "description": "Deep diagnostic for UPS/Solar battery banks.",
        "icon": "battery",
        "base_price": 30,
        "priority": "High",
    },
    {
        "id": "inverter-beep",
        "category": "POWER/SOLAR",
        "title": "Inverter Troubleshooting",
        "description": "Fixing beeping alarms and transfer errors.",
        "icon": "bolt",
        "base_price": 40,
        "priority": "High",
    },
    {
        "id": "panel-clean",
        "category": "POWER/SOLAR",
        "title": "Solar Panel Cleaning",
        "description": "Optimizing efficiency with safe cleaning.",
        "icon": "sun",
        "base_price": 25,
        "priority": "Normal",
    },
    {
        "id": "wifi-fix",
        "category": "IT & TECH",
        "title": "Wi-Fi Troubleshooting",
        "description": "Resolving dead zones and router restarts.",
        "icon": "wifi",
        "base_price": 20,
        "priority": "Normal",
    },
    {
        "id": "laptop-repair",
        "category": "IT & TECH",
        "title": "Laptop & Desktop Repair",
        "description": "Hardware fixes or software cleanup.",
        "icon": "laptop",
        "base_price": 50,
        "priority": "Normal",
    },
    {
        "id": "printer-setup",
        "category": "IT & TECH",
        "title": "Printer & Device Setup",
        "description": "Installing new devices for parents.",
        "icon": "printer",
        "base_price": 15,
        "priority": "Normal",
    },
    {
        "id": "home-chef",
        "category": "HOUSEHOLD",
        "title": "Cooking (Home Chef)",
        "description": "Home-cooked meals for your parents.",
        "icon": "pot",
        "base_price": 45,
        "priority": "Normal",
    },
    {
        "id": "cleaning",
        "category": "HOUSEHOLD",
        "title": "Home Cleaning",
        "description": "Deep cleaning and tidying up.",
        "icon": "sparkles",
        "base_price": 35,
        "priority": "Normal",
    },
    {
        "id": "pet-care",
        "category": "HOUSEHOLD",
        "title": "Pet Care",
        "description": "Dog walking and pet feeding.",
        "icon": "paw",
        "base_price": 25,
        "priority": "Normal",
    },
    {
        "id": "leak-repair",
        "category": "PLUMBING",
        "title": "Leak Repair",
        "description": "Fixing pipes, faucets, or boiler issues.",
        "icon": "faucet",
        "base_price": 35,
        "priority": "High",
    },
    {
        "id": "tank-fill",
        "category": "PLUMBING",
        "title": "Water Tank Coordination",
        "description": "Ensuring water delivery and level checks.",
        "icon": "droplet",
        "base_price": 15,
        "priority": "Normal",
    },
    {
        "id": "medication",
        "category": "ESSENTIALS",
        "title": "Medication Delivery",
        "description": "Sourcing and delivery of chronic meds.",
        "icon": "pill",
        "base_price": 15,
        "priority": "High",
    },
    {
        "id": "grocery",
        "category": "ESSENTIALS",
        "title": "Grocery Shopping",
        "description": "Fresh produce and pantry stocking.",
        "icon": "cart",
        "base_price": 20,
        "priority": "Normal",
    },
    {
        "id": CUSTOM_SERVICE_ID,
        "category": "OTHER",
        "title": "Custom Request",
        "description": "A unique need not listed above? Describe it and we will handle it.",
        "icon": "sparkles",
        "base_price": 50,
        "priority": "Normal",
    },
]

SEED_DISPATCHERS: List[Dict[str, Any]] = [
    {
        "id": "disp-1",
        "name": "Samer",
        "role": "Electrical Specialist & Scout Leader",
        "rating": 4.9,
        "certifications": ["Certified Electrician", "First Aid Trained", "Solar Pro"],
        "photo_url": "https://images.unsplash.com/photo-1507003211169-0a1dd7228f2d?w=400&h=400&fit=crop",
        "supported_service_ids": ["solar-check", "inverter-beep", "panel-clean", "leak-repair", "tank-fill"],
    },
    {
        "id": "disp-2",
        "name": "Rami",
        "role": "IT Technician & Logistics Pro",
        "rating": 4.8,
        "certifications": ["Cisco Certified", "Emergency Responder", "Safe Driver"],
        "photo_url": "https://images.unsplash.com/photo-1500648767791-00dcc994a43e?w=400&h=400&fit=crop",
        "supported_service_ids": ["wifi-fix", "laptop-repair", "printer-setup", "medication", "grocery"],
    },
]
