"""
Prompt builders for each Gemini call.

Every builder is a pure function of the category and call context; the
orchestrator never assembles prompt text itself.
"""

from typing import Optional

from .models import CraftCategory

_RULE_TEMPLATE = """
VISUAL RULES:
1. ISOLATION: Show only {parts} used in this step.
2. NOTHING ELSE: Do not show the finished {whole} or parts from other steps.
3. VIEW: Organized flat-lay (knolling) or a macro close-up of {focus}.
4. MATCH THE REFERENCE: Keep {consistency} identical to the reference image.
5. BACKGROUND: Plain white, {lighting}."""

CATEGORY_RULES = {
    CraftCategory.PAPERCRAFT: dict(
        parts="the paper pieces, cut shapes, scored folds and glue tabs",
        whole="model",
        focus="folds and tab placement",
        consistency="paper weight, colour, texture and edge sharpness",
        lighting="evenly lit",
    ),
    CraftCategory.CLAY: dict(
        parts="the clay forms (rolled shapes, slabs, balls, partly sculpted pieces)",
        whole="sculpture",
        focus="shaping and blending",
        consistency="clay colour, matte finish and surface texture",
        lighting="soft lighting",
    ),
    CraftCategory.FABRIC_SEWING: dict(
        parts="the pattern pieces, seams, hems and stuffing",
        whole="piece",
        focus="seam alignment",
        consistency="fabric weave, colour and stitch density",
        lighting="no tools in frame",
    ),
    CraftCategory.COSTUME_PROPS: dict(
        parts="the foam pieces, bevelled cuts, thermoplastic sections and primed layers",
        whole="prop",
        focus="bevels and layer edges",
        consistency="foam density, thickness and paint tones",
        lighting="no tools or glue in frame",
    ),
    CraftCategory.WOODCRAFT: dict(
        parts="the wood parts (cut boards, dowels, joints, sanded edges)",
        whole="item",
        focus="joinery surfaces",
        consistency="wood grain, colour and thickness",
        lighting="evenly lit",
    ),
    CraftCategory.JEWELRY: dict(
        parts="the beads, charms, jump rings, wire and chain segments",
        whole="piece",
        focus="wire loops and links",
        consistency="metal colour, bead clarity and shine",
        lighting="soft lighting",
    ),
    CraftCategory.KIDS_CRAFTS: dict(
        parts="the simple coloured shapes (felt, foam, pipe cleaners, paper)",
        whole="craft",
        focus="glue points",
        consistency="shapes, playful palette and handmade look",
        lighting="evenly lit",
    ),
    CraftCategory.TABLETOP_FIGURES: dict(
        parts="the miniature parts (heads, arms, torsos, weapons, bases)",
        whole="miniature",
        focus="fit points and surfaces",
        consistency="sculpt detail, primer colour, paint texture and scale",
        lighting="crisp macro lighting",
    ),
}

GENERIC_RULES = dict(
    parts="the materials, tools or sub-components described",
    whole="object",
    focus="the assembly",
    consistency="textures, colours and style",
    lighting="evenly lit",
)


def category_rules(category: Optional[CraftCategory]) -> str:
    """Visual rules for step images in this category (generic when unknown)."""
    return _RULE_TEMPLATE.format(**CATEGORY_RULES.get(category, GENERIC_RULES))


def build_master_prompt(category: CraftCategory, user_prompt: str) -> str:
    return f"""
Create a photorealistic studio photograph of a handmade craft project: {user_prompt}.
Category: {category.value}.
Style: neutral background, even studio lighting, detailed material textures
(paper fibres, fabric grain, wood grain, metal). The object must look tangible,
handmade and finished.
View: front-facing or isometric, centered.
""".strip()


def build_dissection_prompt(
    category: CraftCategory,
    user_prompt: str,
    object_label: Optional[str] = None,
) -> str:
    """Analysis prompt; object_label narrows it to one selected object."""
    if object_label:
        focus = f"""
The FIRST image shows one object selected from the project: "{object_label}".
The SECOND image shows the whole project for context.
Write instructions for "{object_label}" ONLY. Ignore every other object and any
background left over from an imperfect selection.
"""
    else:
        focus = "The image shows the finished project."

    return f"""
You are an expert maker. Analyze this {category.value} craft project: "{user_prompt}".
{focus}
1. Rate the complexity (Simple, Moderate, Complex) with a score from 1 to 10.
2. List the essential materials, visible or implied.
3. Break the construction into logical, ordered steps. Add a safetyWarning only
   where a step involves sharp tools, heat or chemicals.

Return strict JSON matching the schema.
""".strip()


def build_identify_prompt() -> str:
    return """
IMAGE 1 is an object selected from a larger image (transparent background).
IMAGE 2 is the full image, for context only.

Name the selected object in IMAGE 1 with a short, specific label of 2 to 5 words
(for example "Wooden chair", "Knight figure", "Felt owl"). Do not describe the
scene or any surrounding objects.

Return ONLY the label.
""".strip()


def build_step_prompt(
    category: CraftCategory,
    step_text: str,
    object_label: Optional[str] = None,
) -> str:
    """Prompt for one step-group image; step_text is "title: description"."""
    subject = f' of "{object_label}"' if object_label else ""
    return f"""
REFERENCE IMAGE: the finished craft{subject}.
TASK: Generate a photorealistic image for this build step: "{step_text}".
{category_rules(category)}
""".strip()
