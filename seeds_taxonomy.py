# seeds_taxonomy.py
# ------------------------------------------------------------
# Pure-data module (no DB access, no app import)
# ------------------------------------------------------------
# Exposes:
# - SPECIALTY_TREE: specialties -> subspecialties -> categories
#   (-> subcategories, -> procedures with key terms)
# - ALL_SPECIALTIES: flat list of specialty names
#
# `flask seed-taxonomy` (cli.py) walks SPECIALTY_TREE and inserts whatever is
# missing (idempotent, matched on lowercased name under the same parent).
# Podiatry deliberately has no subspecialties: its users browse
# Orthopaedic Surgery > Foot and Ankle.
# ------------------------------------------------------------

# =========================
# 1) SPECIALTIES -> SUBSPECIALTIES -> CATEGORIES
# =========================
SPECIALTY_TREE = [
    {
        "name": "Orthopaedic Surgery",
        "subspecialties": [
            {"name": "Generalist"},
            {
                "name": "Foot and Ankle",
                "categories": [
                    {
                        "name": "Bunion",
                        "subcategories": [
                            {"name": "Minimally Invasive Bunion"},
                            {"name": "Open Bunion Correction"},
                        ],
                        "procedures": [
                            {"name": "Chevron Osteotomy", "key_terms": ["chevron", "distal metatarsal osteotomy"]},
                            {"name": "Lapidus Procedure", "key_terms": ["lapidus", "first tmt fusion"]},
                        ],
                    },
                    {
                        "name": "Ankle Arthritis",
                        "subcategories": [{"name": "Total Ankle Replacement"}],
                        "procedures": [
                            {"name": "Ankle Arthrodesis", "key_terms": ["ankle fusion", "arthrodesis"]},
                        ],
                    },
                    {
                        "name": "Achilles Tendon",
                        "procedures": [
                            {"name": "Achilles Tendon Repair", "key_terms": ["achilles rupture", "tendon repair"]},
                        ],
                    },
                ],
            },
            {
                "name": "Sports Medicine",
                "categories": [
                    {
                        "name": "Knee Ligaments",
                        "subcategories": [{"name": "ACL Reconstruction"}],
                        "procedures": [
                            {"name": "Meniscal Repair", "key_terms": ["meniscus", "all-inside repair"]},
                        ],
                    },
                    {
                        "name": "Shoulder Instability",
                        "procedures": [
                            {"name": "Bankart Repair", "key_terms": ["labral repair", "bankart"]},
                        ],
                    },
                ],
            },
            {
                "name": "Hand and Upper Extremity",
                "categories": [
                    {
                        "name": "Carpal Tunnel",
                        "procedures": [
                            {"name": "Endoscopic Carpal Tunnel Release", "key_terms": ["ectr", "median nerve"]},
                        ],
                    },
                    {"name": "Distal Radius Fractures"},
                ],
            },
            {
                "name": "Adult Reconstruction",
                "categories": [
                    {
                        "name": "Hip Arthroplasty",
                        "subcategories": [{"name": "Direct Anterior Approach"}],
                        "procedures": [
                            {"name": "Total Hip Arthroplasty", "key_terms": ["tha", "hip replacement"]},
                        ],
                    },
                    {
                        "name": "Knee Arthroplasty",
                        "procedures": [
                            {"name": "Total Knee Arthroplasty", "key_terms": ["tka", "knee replacement"]},
                        ],
                    },
                ],
            },
        ],
    },
    {
        "name": "Podiatry",
        "subspecialties": [],
    },
    {
        "name": "Neurosurgery",
        "subspecialties": [
            {"name": "Generalist"},
            {
                "name": "Spine",
                "categories": [
                    {
                        "name": "Lumbar Spine",
                        "subcategories": [{"name": "Minimally Invasive Decompression"}],
                        "procedures": [
                            {"name": "Lumbar Microdiscectomy", "key_terms": ["discectomy", "herniated disc"]},
                        ],
                    },
                    {"name": "Cervical Spine"},
                ],
            },
        ],
    },
]

# =========================
# 2) Flat lists (for quick checks)
# =========================
ALL_SPECIALTIES = [spec["name"] for spec in SPECIALTY_TREE]
