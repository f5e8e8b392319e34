"""
Domain knowledge table.

Maps each specialty to an instruction profile (vocabulary injected into stage
prompts) and a baseline counterfeit-risk level. Pure data: adding a specialty
means adding a row, never a branch.
"""

import re
from dataclasses import dataclass
from typing import Optional

from src.models.schemas import DomainExpert, PipelineStage, RiskLevel


# =============================================================================
# Profile Definition
# =============================================================================

@dataclass(frozen=True)
class DomainProfile:
    """Vocabulary and heuristics for one specialty."""
    
    domain: DomainExpert
    title: str
    eras: tuple[str, ...] = ()
    construction_tells: tuple[str, ...] = ()
    maker_marks: tuple[str, ...] = ()
    red_flags: tuple[str, ...] = ()
    authentication_focus: tuple[str, ...] = ()
    
    def section(self, name: str) -> tuple[str, ...]:
        return getattr(self, name)
    
    def render(self, sections: tuple[str, ...]) -> str:
        """Render the requested sections as a prompt block."""
        blocks = []
        for name in sections:
            lines = self.section(name)
            if not lines:
                continue
            heading = SECTION_HEADINGS[name]
            blocks.append(heading + ":\n" + "\n".join(f"- {line}" for line in lines))
        if not blocks:
            return ""
        return f"{self.title} EXPERTISE\n\n" + "\n\n".join(blocks)


SECTION_HEADINGS: dict[str, str] = {
    "eras": "PERIOD IDENTIFICATION",
    "construction_tells": "CONSTRUCTION AND MATERIAL TELLS",
    "maker_marks": "KNOWN MAKERS AND MARKS",
    "red_flags": "RED FLAGS",
    "authentication_focus": "AUTHENTICATION FOCUS",
}

# Which profile sections each stage receives
STAGE_SECTIONS: dict[str, tuple[str, ...]] = {
    PipelineStage.TRIAGE.value: (),
    PipelineStage.EVIDENCE.value: ("construction_tells", "maker_marks", "red_flags"),
    PipelineStage.CANDIDATES.value: ("eras", "maker_marks", "construction_tells"),
    PipelineStage.ANALYSIS.value: (
        "eras",
        "construction_tells",
        "maker_marks",
        "red_flags",
        "authentication_focus",
    ),
}


# =============================================================================
# Profiles
# =============================================================================

DOMAIN_PROFILES: dict[str, DomainProfile] = {
    profile.domain.value: profile
    for profile in (
        DomainProfile(
            domain=DomainExpert.FURNITURE,
            title="FURNITURE",
            eras=(
                "Colonial (1620-1780): William & Mary, Queen Anne, Chippendale",
                "Federal (1780-1820): Hepplewhite, Sheraton, American Empire",
                "Victorian (1840-1900): Gothic, Rococo, Renaissance Revival, Eastlake",
                "Arts & Crafts (1890-1920): Mission, Craftsman",
                "Art Deco (1920-1940): streamlined, geometric",
                "Mid-Century Modern (1945-1975): Eames, Knoll, Herman Miller, Danish",
            ),
            construction_tells=(
                "Hand-cut dovetails have irregular spacing (typically pre-1860); machine dovetails are uniform",
                "Rose-head nails pre-1800, cut nails 1790-1890, wire nails 1890+",
                "Flat-bottom screw slots pre-1850, pointed screws post-1850, Phillips post-1930",
                "Pine or poplar secondary woods suggest American; oak suggests English",
            ),
            maker_marks=(
                "Gustav Stickley: red decal (early), black branded 'Stickley' in a box",
                "L. & J.G. Stickley: 'Handcraft' or 'Work of...' labels",
                "Herman Miller / Eames: shock mounts, dated manufacturer labels",
                "Knoll: labels with model numbers",
                "Limbert and Roycroft: branded or carved shop marks",
            ),
            red_flags=(
                "Distressing too uniform across the entire piece",
                "Modern screws or nails in a supposed antique",
                "Plywood anywhere on a supposed antique",
                "New wood smell when drawers are opened",
            ),
            authentication_focus=(
                "Drawer joinery and secondary woods",
                "Fastener types against the claimed period",
                "Labels, brands and their placement",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.CERAMICS,
            title="CERAMICS AND POTTERY",
            eras=(
                "American art pottery (1880-1940): Roseville, Rookwood, Weller, Van Briggle",
                "Mid-century studio and production pottery (1940-1970): McCoy and others",
            ),
            construction_tells=(
                "Impressed marks versus printed backstamps",
                "Glaze crazing and wear consistent with age",
                "Foot ring wear and kiln marks",
            ),
            maker_marks=(
                "Roseville: pattern lines such as Futura, Pinecone, Sunflower; mark evolution",
                "Rookwood: flame marks 1886-1960, count flames to date",
                "Weller: Louwelsa, Sicard, Hudson lines",
                "McCoy: 'NM' marks, cookie jars",
                "Van Briggle: dated marks 1901-1920 are most valuable",
                "Meissen: crossed swords, orientation indicates period",
                "Royal Copenhagen: three wave marks",
                "Wedgwood: impressed marks, jasperware colors",
            ),
            red_flags=(
                "Marks too crisp or perfect on old pieces",
                "Mark style wrong for the claimed period",
                "Paint over marks hiding a newer mark",
            ),
            authentication_focus=(
                "Backstamp location, style and color",
                "Artist signatures and decorator marks",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.GLASS,
            title="GLASS",
            eras=(
                "Art glass (1880-1930): Tiffany, Steuben, Lalique",
                "Depression era (1920s-1940s): American Sweetheart, Cherry Blossom, Mayfair, Princess",
                "Carnival glass (1905-1930): Grape & Cable, Orange Tree, Peacock at Fountain",
            ),
            construction_tells=(
                "Pontil marks indicate hand-blown glass",
                "Mold seams indicate machine-made glass",
                "Ring or tone when tapped",
                "Depression colors: pink, green, amber, cobalt (cobalt more valuable)",
                "Carnival colors: marigold common; amethyst, green, blue, red rare",
            ),
            maker_marks=(
                "Tiffany: LCT Favrile signatures, iridescence quality",
                "Steuben: Aurene signatures, Carder era",
                "Lalique: 'R. LALIQUE' (early) versus 'Lalique France' (later)",
                "Anchor Hocking, Hazel Atlas, Jeannette for Depression glass",
            ),
            red_flags=(
                "Signature added to an unsigned period piece",
                "Reproduction colors not made in the original run",
            ),
            authentication_focus=(
                "Signature style and placement",
                "Pontil and seam evidence",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.SILVER,
            title="SILVER AND METALWARE",
            construction_tells=(
                "Sterling is .925; weight matters, heavier is more valuable",
                "EPNS means electroplated nickel silver",
                "Triple or quadruple plate designations indicate silverplate",
            ),
            maker_marks=(
                "American makers: Gorham, Tiffany, Reed & Barton, Wallace",
                "English hallmarks: maker's initials, lion passant for sterling",
                "City marks: leopard (London), anchor (Birmingham), crown (Sheffield)",
                "Date letter: font plus shield shape gives the year",
            ),
            red_flags=(
                "Rubbed or worn marks",
                "Marks wrong for the claimed maker",
                "Seams on supposedly hand-raised pieces",
            ),
            authentication_focus=(
                "Read all four or five hallmarks in sequence",
                "Pattern identification for flatware",
                "Sterling versus plate",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.JEWELRY,
            title="JEWELRY",
            eras=(
                "Georgian (1714-1837): closed-back settings, foil-backed stones",
                "Victorian (1837-1901): mourning jewelry, serpents, hearts, hands",
                "Edwardian (1901-1915): platinum filigree, diamonds and pearls",
                "Art Nouveau (1890-1910): organic forms, enamel",
                "Art Deco (1920-1935): geometric, platinum, calibre-cut stones",
                "Retro (1935-1950): bold rose gold, large stones",
            ),
            construction_tells=(
                "Bakelite tests: Simichrome, hot-water smell",
                "Stone cut must match the claimed period",
            ),
            maker_marks=(
                "10K, 14K, 18K gold karat stamps",
                "750 = 18K, 585 = 14K, 375 = 9K",
                "925 = sterling silver; PLAT or PT = platinum",
                "Signed costume pieces: Miriam Haskell, Eisenberg, Trifari, Coro",
                "Luxury houses: Cartier, Van Cleef & Arpels, Tiffany & Co., Bulgari, Harry Winston",
            ),
            red_flags=(
                "Modern findings on an antique piece",
                "Wrong cut for the claimed period",
                "Glue where prongs should be",
            ),
            authentication_focus=(
                "Hallmarks, karat stamps and serial numbers",
                "Setting technique and findings",
                "House signatures on luxury pieces",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.WATCHES,
            title="WATCHES",
            construction_tells=(
                "Sweeping seconds hand on mechanical movements; ticking suggests quartz",
                "Case weight: solid versus hollow",
                "Movement finishing quality (requires opening)",
            ),
            maker_marks=(
                "Rolex: crown at 12 o'clock, 2.5x cyclops, rehaut engraving post-2007",
                "Omega: hippocampus logo, caliber matching the reference",
                "Patek Philippe: Calatrava cross, movement finishing",
                "Audemars Piguet, Vacheron Constantin, Cartier, Tudor, Grand Seiko",
            ),
            red_flags=(
                "Date magnification wrong (fakes often 1.5x)",
                "Wrong font on the dial",
                "Ticking second hand on an automatic model",
                "Light weight",
                "Poor finishing",
                "Wrong crown position",
            ),
            authentication_focus=(
                "Serial and reference numbers between the lugs",
                "Dial printing and lume quality",
                "Caseback and movement",
                "Papers, box and service history",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.ART,
            title="ART AND PRINTS",
            construction_tells=(
                "Canvas age and stretcher type",
                "Craquelure patterns: age versus artificial aging",
                "Printing technique: etching, lithograph, serigraph",
                "Paper quality and watermarks",
                "Linen-backing on posters indicates value",
            ),
            maker_marks=(
                "Signature location and style",
                "Edition numbers (lower is usually more valuable)",
            ),
            red_flags=(
                "Signature too perfect",
                "Modern materials under old varnish",
                "Photo-mechanical dot pattern indicating a reproduction",
            ),
            authentication_focus=(
                "Original versus reproduction",
                "Condition: foxing, toning, tears",
                "Size against known examples",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.TEXTILES,
            title="TEXTILES AND RUGS",
            construction_tells=(
                "Hand-knotted versus machine-made (check the back)",
                "KPSI: knots per square inch, higher is finer",
                "Natural versus synthetic dyes",
                "Hand versus machine quilting stitches",
                "Metal zippers indicate older clothing",
            ),
            maker_marks=(
                "Persian, Turkish and Chinese rug patterns",
                "Clothing labels and union tags",
            ),
            red_flags=(
                "Synthetic fibers in an antique piece",
                "Modern dyes in an old rug",
                "Construction wrong for the claimed age",
            ),
            authentication_focus=(
                "Back of the rug or quilt",
                "Labels and tags",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.TOYS,
            title="TOYS AND DOLLS",
            construction_tells=(
                "Lithography quality on tin toys",
                "Working mechanism",
                "Doll body type and material",
                "Paint originality on cast iron",
            ),
            maker_marks=(
                "Tin toys: Marx, Chein, Schuco",
                "Doll head marks: Jumeau, Bru, Simon & Halbig",
            ),
            red_flags=(
                "Paint too bright on an old toy",
                "Wrong screws or fasteners",
                "Modern casting marks",
            ),
            authentication_focus=(
                "Original clothing versus replacements",
                "Reproduction casting detection",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.BOOKS,
            title="BOOKS AND EPHEMERA",
            construction_tells=(
                "Binding tightness",
                "Foxing, staining and inscriptions",
                "Dust jacket condition is crucial for value",
            ),
            maker_marks=(
                "First edition, first printing indicators and number lines",
                "Publisher imprints",
            ),
            red_flags=(
                "Facsimile passed as original",
                "Replaced pages",
                "Rebacked bindings",
            ),
            authentication_focus=(
                "Copyright page and number line",
                "Dust jacket price and state",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.TOOLS,
            title="TOOLS AND INSTRUMENTS",
            construction_tells=(
                "Brass versus plastic components",
                "Completeness of sets",
                "Working condition",
            ),
            maker_marks=(
                "Stanley planes: type study for dating",
                "Maker marks on chisels",
                "Patent dates",
                "Keuffel & Esser for scientific instruments",
            ),
            red_flags=(
                "Modern replacement parts",
                "Over-restoration",
                "Missing components",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.LIGHTING,
            title="LIGHTING",
            construction_tells=(
                "Cloth-covered wiring indicates older lamps",
                "Base and shade should be an original pair",
                "Hardware style and crystal quality",
            ),
            maker_marks=(
                "Tiffany: matching base and shade, signatures",
                "Handel: reverse-painted shades",
                "Pairpoint: 'puffy' shades",
            ),
            red_flags=(
                "Married base and shade",
                "Modern wiring passed as original",
                "Hardware wrong for the period",
            ),
            authentication_focus=(
                "Shade and base signatures",
                "Original versus replacement parts",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.ELECTRONICS,
            title="ELECTRONICS",
            eras=(
                "Tube era versus transistor era",
            ),
            construction_tells=(
                "Completeness: all parts and manuals",
                "Working condition is crucial",
                "Lens condition on cameras",
            ),
            maker_marks=(
                "Audio: McIntosh, Marantz",
                "Computers: Apple, Commodore",
                "Cameras: Leica, Hasselblad, Polaroid",
            ),
            red_flags=(
                "Non-working without disclosure",
                "Replacement parts",
                "Modified items",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.VEHICLES,
            title="VEHICLES",
            construction_tells=(
                "Matching numbers: engine and transmission",
                "Original paint versus repaint",
                "Component age",
            ),
            maker_marks=(
                "VIN decode for authenticity",
                "Frame and engine numbers on motorcycles",
                "Bicycles: Schwinn, Raleigh premiums",
            ),
            red_flags=(
                "VIN tampering",
                "Non-matching numbers",
                "Title issues",
            ),
            authentication_focus=(
                "Documentation and title history",
            ),
        ),
        DomainProfile(
            domain=DomainExpert.GENERAL,
            title="GENERAL",
            construction_tells=(
                "What it is exactly, where and when it was made",
                "What condition it is in",
            ),
            maker_marks=(
                "Any maker marks, labels, dates or other identifying features",
            ),
        ),
    )
}


# =============================================================================
# Baseline Risk
# =============================================================================

# Empirical counterfeit prevalence per specialty
BASE_RISK: dict[str, RiskLevel] = {
    DomainExpert.WATCHES.value: RiskLevel.HIGH,
    DomainExpert.JEWELRY.value: RiskLevel.HIGH,
    DomainExpert.ART.value: RiskLevel.MEDIUM,
    DomainExpert.SILVER.value: RiskLevel.MEDIUM,
    DomainExpert.CERAMICS.value: RiskLevel.MEDIUM,
    DomainExpert.GLASS.value: RiskLevel.MEDIUM,
    DomainExpert.LIGHTING.value: RiskLevel.MEDIUM,
    DomainExpert.TOYS.value: RiskLevel.MEDIUM,
    DomainExpert.VEHICLES.value: RiskLevel.MEDIUM,
    DomainExpert.FURNITURE.value: RiskLevel.LOW,
    DomainExpert.TEXTILES.value: RiskLevel.LOW,
    DomainExpert.BOOKS.value: RiskLevel.LOW,
    DomainExpert.TOOLS.value: RiskLevel.LOW,
    DomainExpert.ELECTRONICS.value: RiskLevel.LOW,
    DomainExpert.GENERAL.value: RiskLevel.LOW,
}

# High-counterfeit makers; matched case-insensitively on word boundaries
LUXURY_MAKERS: tuple[str, ...] = (
    # Watches
    "rolex",
    "omega",
    "patek philippe",
    "audemars piguet",
    "vacheron constantin",
    "jaeger-lecoultre",
    "iwc",
    "breitling",
    "panerai",
    "tudor",
    "grand seiko",
    "a. lange",
    "blancpain",
    "zenith",
    # Jewelry and houses
    "cartier",
    "van cleef",
    "tiffany",
    "bulgari",
    "bvlgari",
    "harry winston",
    "chopard",
    "piaget",
    "graff",
    "boucheron",
    "david yurman",
    # Fashion
    "hermes",
    "hermès",
    "chanel",
    "louis vuitton",
    "gucci",
    "dior",
    "prada",
)


_LUXURY_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(maker) for maker in LUXURY_MAKERS) + r")\b",
    re.IGNORECASE,
)


def _key(domain: DomainExpert | str) -> str:
    return domain.value if isinstance(domain, DomainExpert) else str(domain)


def profile_for(domain: DomainExpert | str) -> DomainProfile:
    """Instruction profile for a specialty; unknown specialties get the general profile."""
    return DOMAIN_PROFILES.get(_key(domain), DOMAIN_PROFILES[DomainExpert.GENERAL.value])


def base_risk_for(domain: DomainExpert | str) -> RiskLevel:
    """Baseline counterfeit risk for a specialty."""
    return BASE_RISK.get(_key(domain), RiskLevel.LOW)


def profile_text(domain: DomainExpert | str, stage: PipelineStage | str) -> str:
    """Profile sections configured for ``stage``, rendered for a prompt."""
    stage_key = stage.value if isinstance(stage, PipelineStage) else str(stage)
    return profile_for(domain).render(STAGE_SECTIONS.get(stage_key, ()))


def match_luxury_maker(text: Optional[str]) -> Optional[str]:
    """Return the luxury maker contained in ``text``, if any."""
    if not text:
        return None
    match = _LUXURY_PATTERN.search(text)
    return match.group(0).lower() if match else None
