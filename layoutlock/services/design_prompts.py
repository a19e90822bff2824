"""
Instruction text for the room-photo editing model.

The text sent on each attempt is assembled from named fragments by
build_attempt_instructions(). Later attempts only ever append fragments, so an
attempt's text always contains everything the previous attempt said.
"""
from math import gcd
from typing import Optional

CLEARER_PHOTO_SENTINEL = "NEED_CLEARER_PHOTO:"

SPACE_LABELS = {
    "bathroom": "Bathroom",
    "kitchen": "Kitchen",
    "laundry": "Laundry",
    "open-plan": "Open-plan living area",
}

SYSTEM_INSTRUCTION = f"""You are editing a real photograph of a room. This is photo editing, not image generation.
Return the SAME room from the SAME camera position with renovated surfaces and fixture styling.

Never change:
1. The camera angle, lens, zoom, crop or perspective.
2. Walls, partitions, corners, ceiling height or the room's outline.
3. Doors, windows, their frames or any other opening.
4. The position and footprint of every fixture (toilet, basin, vanity, shower, bath, cabinets, appliances).
5. The image orientation, dimensions or aspect ratio.

You may change:
- Paint, tiles, flooring, benchtops and splashbacks.
- The style and finish of fixtures and joinery, kept in place and at the same size.
- Cabinet fronts, handles and tapware.
- Lighting accents mounted on existing surfaces.

Do not add furniture, storage or text overlays.

If the photo is too unclear to keep the structure exactly, reply with text only:
"{CLEARER_PHOTO_SENTINEL} <short reason>" and do not return an image."""

VISIBILITY_BOOST = """

MAKE THE RENOVATION OBVIOUS:
- The result must read as a finished renovation, not a slight colour shift.
- Refresh several surfaces and modernise the fixtures where they stand.
- Include at least one visible ambient lighting accent such as a backlit mirror or a toe-kick strip.
- Geometry stays untouched while finishes change."""

LAYOUT_LOCK = f"""

LAYOUT LOCK (the previous edit moved the room's structure):
- No wall or partition may be added, removed or moved.
- No opening may be added or removed. Doors and windows keep their frames and positions.
- The room's boundaries must line up with the original photo.
- Every fixture stays present and in the same place; only its style and finish may change.
- If this is not possible, reply with: {CLEARER_PHOTO_SENTINEL} layout preservation required."""

FINAL_GUARDRAIL = """

FINAL ATTEMPT:
- Overlay the result on the original photo in your head: corners, door frames and window frames must coincide.
- Keep the exact framing. Do not shift, zoom, rotate or re-render the room from a new viewpoint.
- Change materials, colours and fixture styling only."""


def get_space_label(space_type: str) -> str:
    return SPACE_LABELS.get(space_type, space_type.replace("-", " ").title())


def get_aspect_ratio(width: int, height: int) -> str:
    divisor = gcd(width, height) or 1
    return f"{width // divisor}:{height // divisor}"


def get_orientation(width: int, height: int) -> str:
    if height > width:
        return "portrait"
    if width > height:
        return "landscape"
    return "square"


def build_dimension_constraint(width: Optional[int], height: Optional[int]) -> str:
    """Clause asking the model to keep the input's exact pixel size and orientation."""
    if not width or not height:
        return ""

    orientation = get_orientation(width, height)
    return f"""
INPUT IMAGE: {width} x {height} pixels, {orientation}, aspect ratio {get_aspect_ratio(width, height)}.
Preserve these exact pixel dimensions and orientation in the output.
A {orientation} input must produce a {orientation} output. Do not rotate, flip, crop or resize.
"""


def build_style_prompt(
    space_type: str,
    design_style: str,
    color_tone: Optional[str] = None,
    material_feel: Optional[str] = None,
    fixture_finish: Optional[str] = None,
    dimension_constraint: str = "",
) -> str:
    preferences = []
    if color_tone:
        preferences.append(f"Work in a {color_tone.lower()} colour palette.")
    if material_feel:
        preferences.append(f"Favour {material_feel.lower()} materials.")
    if fixture_finish:
        preferences.append(f"Fixtures should have a {fixture_finish.lower()} finish.")

    return f"""{dimension_constraint}
EDITING TASK
Room: {get_space_label(space_type)}

Design brief:
- Style: {design_style}
- Colour tone: {color_tone or "not specified"}
- Materials: {material_feel or "not specified"}
- Fixture finish: {fixture_finish or "not specified"}

Edit this photo only and apply a {design_style} look. {" ".join(preferences)}
Keep the same room, viewpoint and objects. Update surfaces and fixture styling in place."""


def build_describe_prompt(space_type: str, description: str, dimension_constraint: str = "") -> str:
    return f"""{dimension_constraint}
EDITING TASK
Room: {get_space_label(space_type)}

Edit this photo only. Keep the same room, viewpoint and objects, and change finishes only.

Requested changes:
{description}

Whatever the request says, walls, openings and fixture positions stay exactly where they are."""


def build_base_instructions(
    space_type: str,
    design_style: Optional[str] = None,
    prompt: Optional[str] = None,
    color_tone: Optional[str] = None,
    material_feel: Optional[str] = None,
    fixture_finish: Optional[str] = None,
    image_width: Optional[int] = None,
    image_height: Optional[int] = None,
) -> str:
    """Base instructions for a request: a style brief when a style is chosen, else the free-text description."""
    dimension_constraint = build_dimension_constraint(image_width, image_height)
    if design_style:
        body = build_style_prompt(space_type, design_style, color_tone, material_feel, fixture_finish, dimension_constraint)
    else:
        body = build_describe_prompt(space_type, prompt or "", dimension_constraint)
    return f"{SYSTEM_INSTRUCTION}\n\n{body.strip()}"


def build_attempt_instructions(base_instructions: str, attempt: int, max_attempts: int) -> str:
    """
    Instruction text for one attempt.

    Attempt 1: base + visibility boost.
    Attempt 2+: also the layout lock.
    Last attempt (when it is attempt 2 or later): also the final guardrail.
    """
    if attempt < 1:
        raise ValueError(f"Attempt numbers start at 1, got {attempt}")

    text = base_instructions + VISIBILITY_BOOST
    if attempt >= 2:
        text += LAYOUT_LOCK
        if attempt >= max_attempts:
            text += FINAL_GUARDRAIL
    return text
