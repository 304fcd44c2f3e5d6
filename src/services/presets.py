"""
組み込みプリセット

カタログのデフォルトデータ（Profile / Blueprint / Block / Filter / BaseModel）
"""

from src.services.catalog import (
    BaseModelDefinition,
    BlockDefinition,
    BlockType,
    BlueprintDefinition,
    FilterDefinition,
    FilterSchema,
    ProfileDefinition,
)

# 全プロンプトに挿入される固定のシステム指示
SYSTEM_PROMPT_CORE = """You are a creative visual prompt generator. Follow these guidelines:

QUALITY STANDARDS:
- Be specific and detailed in visual descriptions
- Use concrete, observable details rather than abstract concepts
- Include lighting, atmosphere, and mood when relevant
- Specify camera angles and compositional elements
- Reference real-world materials, textures, and techniques

STYLE GUIDELINES:
- Maintain consistency in aesthetic choices
- Layer details from general to specific
- Use professional terminology appropriate to the medium
- Avoid conflicting or contradictory instructions
- Balance creativity with technical precision

OUTPUT FORMAT:
- Write in clear, comma-separated phrases
- Progress from subject to environment to style
- End with technical parameters when applicable
- Keep total length appropriate for the target model"""


DEFAULT_PROFILES: list[ProfileDefinition] = [
    ProfileDefinition(
        id="midjourney_v6",
        name="Midjourney V6",
        base_prompt="Create a highly detailed, professional quality image with cinematic composition.",
        preferred_order=[
            BlockType.SUBJECT,
            BlockType.STYLE,
            BlockType.CAMERA,
            BlockType.LAYOUT,
            BlockType.POSTFX,
            BlockType.CONSTRAINT,
        ],
        forbidden_patterns=["nsfw", "gore", "violence"],
        max_length=2000,
        capabilities=["photorealistic", "artistic", "stylized"],
    ),
    ProfileDefinition(
        id="dalle_3",
        name="DALL-E 3",
        base_prompt="Generate a visually striking image with careful attention to detail and artistic quality.",
        preferred_order=[
            BlockType.SUBJECT,
            BlockType.LAYOUT,
            BlockType.STYLE,
            BlockType.CAMERA,
            BlockType.CONSTRAINT,
            BlockType.POSTFX,
        ],
        forbidden_patterns=["nsfw", "gore"],
        max_length=4000,
        capabilities=["photorealistic", "illustration", "3d"],
    ),
    ProfileDefinition(
        id="sdxl",
        name="Stable Diffusion XL",
        base_prompt="A masterfully crafted image demonstrating exceptional technical and artistic quality.",
        preferred_order=[
            BlockType.SUBJECT,
            BlockType.STYLE,
            BlockType.POSTFX,
            BlockType.CAMERA,
            BlockType.LAYOUT,
            BlockType.CONSTRAINT,
        ],
        forbidden_patterns=[],
        max_length=1500,
        capabilities=["photorealistic", "anime", "artistic"],
    ),
    ProfileDefinition(
        id="flux_pro",
        name="Flux Pro",
        base_prompt="Ultra high quality, professional grade imagery with exceptional detail and composition.",
        preferred_order=[
            BlockType.SUBJECT,
            BlockType.CAMERA,
            BlockType.STYLE,
            BlockType.LAYOUT,
            BlockType.POSTFX,
            BlockType.CONSTRAINT,
        ],
        forbidden_patterns=["nsfw"],
        max_length=2500,
        capabilities=["photorealistic", "cinematic", "editorial"],
    ),
]


DEFAULT_BLUEPRINTS: list[BlueprintDefinition] = [
    BlueprintDefinition(
        id="minecraft_food",
        name="Minecraft Style Food",
        category="gaming",
        description="Pixel-art food items with a Minecraft look, blocky textures and vivid colors",
        blocks=["pixelart_base", "food_subject", "minecraft_lighting", "game_ui_frame"],
        constraints=["maintain_blocky_aesthetic", "no_smooth_gradients"],
        preview_description="8-bit inspired food photography",
    ),
    BlueprintDefinition(
        id="analog_collage_fridge",
        name="Analog Collage Refrigerator",
        category="retro",
        description="Vintage collage look with fridge magnets and magazine cut-outs",
        blocks=["collage_base", "vintage_texture", "magnet_elements", "paper_cutout"],
        constraints=["visible_paper_edges", "imperfect_alignment"],
        preview_description="70s magazine cut-out collage",
    ),
    BlueprintDefinition(
        id="gothic_car_wrap",
        name="Gothic Car Wrap",
        category="aesthetic",
        description="Dark gothic patterns applied to vehicle wraps",
        blocks=["gothic_pattern", "vehicle_surface", "dark_lighting", "ornate_details"],
        constraints=["seamless_pattern", "vehicle_contour_respect"],
        preview_description="Dark ornamental vehicle design",
    ),
    BlueprintDefinition(
        id="weightless_phone_photo",
        name="Weightless Phone Photo",
        category="aesthetic",
        description="Floating objects shot with a zero-gravity smartphone look",
        blocks=["floating_objects", "smartphone_camera", "soft_shadows", "clean_background"],
        constraints=["natural_lighting", "physics_defying_but_believable"],
        preview_description="Levitating product photography",
    ),
    BlueprintDefinition(
        id="lookbook_9_frame",
        name="Lookbook 9-Frame",
        category="fashion",
        description="Fashion lookbook grid with nine coordinated poses",
        blocks=["grid_layout_9", "fashion_poses", "editorial_lighting", "minimal_background"],
        constraints=["consistent_model", "cohesive_color_palette"],
        preview_description="3x3 editorial fashion grid",
    ),
    BlueprintDefinition(
        id="cctv_detection",
        name="CCTV Detection",
        category="surveillance",
        description="Security camera footage with detection overlays and timestamps",
        blocks=["cctv_camera", "detection_overlay", "timestamp_hud", "grainy_texture"],
        constraints=["fixed_camera_angle", "low_quality_authentic"],
        preview_description="Security footage look",
    ),
    BlueprintDefinition(
        id="mspaint_screen",
        name="MS Paint Screen",
        category="retro",
        description="Classic Windows Paint interface with amateur digital art",
        blocks=["mspaint_interface", "crude_drawing", "limited_palette", "aliased_edges"],
        constraints=["16_color_maximum", "no_antialiasing"],
        preview_description="Windows 95 Paint look",
    ),
    BlueprintDefinition(
        id="character_creator",
        name="Character Creator Screen",
        category="ui",
        description="Video game character creation screen with sliders and options",
        blocks=["ui_panels", "character_turntable", "customization_sliders", "stat_display"],
        constraints=["game_ui_consistency", "readable_interface"],
        preview_description="RPG customization interface",
    ),
    BlueprintDefinition(
        id="ig_realistic_ugc",
        name="IG Realistic UGC",
        category="ugc",
        description="Ultra-realistic Instagram Story selfie with handheld look and lo-fi texture",
        blocks=[
            "ig_story_base",
            "ig_framing_selfie",
            "ig_story_aesthetic",
            "ig_appearance_neutral",
            "ig_accessory_details",
        ],
        constraints=["no_text_stickers", "raw_story_only"],
        preview_description="Authentic IG Story selfie",
    ),
]


def _block(key: str, label: str, template: str, block_type: BlockType) -> BlockDefinition:
    return BlockDefinition(key=key, label=label, template=template, type=block_type)


DEFAULT_BLOCKS: list[BlockDefinition] = [
    # Minecraft Style Food
    _block("pixelart_base", "Pixel Art Base", "pixel art style, 8-bit aesthetic, visible blocky pixels", BlockType.STYLE),
    _block("food_subject", "Food Subject", "{subject}, appetizing presentation, food photography", BlockType.SUBJECT),
    _block("minecraft_lighting", "Minecraft Lighting", "flat shading, ambient occlusion, game-style lighting", BlockType.POSTFX),
    _block("game_ui_frame", "Game UI Frame", "inventory slot frame, game interface border", BlockType.LAYOUT),
    # Analog Collage Refrigerator
    _block("collage_base", "Collage Base", "cut paper collage, layered elements, mixed media", BlockType.STYLE),
    _block("vintage_texture", "Vintage Texture", "aged paper texture, slight yellowing, worn edges", BlockType.POSTFX),
    _block("magnet_elements", "Magnet Elements", "fridge magnets, letter magnets, magnetic clips", BlockType.SUBJECT),
    _block("paper_cutout", "Paper Cutout", "magazine cut-outs, scissor edges, visible glue", BlockType.STYLE),
    # Gothic Car Wrap
    _block("gothic_pattern", "Gothic Pattern", "intricate gothic patterns, dark ornamental design, cathedral inspired", BlockType.STYLE),
    _block("vehicle_surface", "Vehicle Surface", "{subject} body wrap, vehicle contours, automotive surface", BlockType.SUBJECT),
    _block("dark_lighting", "Dark Lighting", "dramatic low-key lighting, deep shadows, somber atmosphere", BlockType.CAMERA),
    _block("ornate_details", "Ornate Details", "filigree patterns, baroque elements, detailed embellishments", BlockType.STYLE),
    # Weightless Phone Photo
    _block("floating_objects", "Floating Objects", "{subject} levitating, zero gravity, suspended in the air", BlockType.SUBJECT),
    _block("smartphone_camera", "Smartphone Camera", "smartphone photography, mobile camera quality, casual framing, {camera_bias}", BlockType.CAMERA),
    _block("soft_shadows", "Soft Shadows", "soft diffused shadows, gentle light falloff", BlockType.POSTFX),
    _block("clean_background", "Clean Background", "minimalist background, solid color backdrop, studio setting", BlockType.LAYOUT),
    # Lookbook 9-Frame
    _block("grid_layout_9", "9-Frame Grid", "3x3 grid layout, nine equal frames, consistent spacing, {layout_entropy}", BlockType.LAYOUT),
    _block("fashion_poses", "Fashion Poses", "{subject} in editorial poses, fashion model posture, professional poses", BlockType.SUBJECT),
    _block("editorial_lighting", "Editorial Lighting", "fashion photography lighting, beauty dish, rim light", BlockType.CAMERA),
    _block("minimal_background", "Minimal Background", "clean background, seamless paper, neutral tones", BlockType.LAYOUT),
    # CCTV Detection
    _block("cctv_camera", "CCTV Camera", "security camera view of {environment}, wide angle distortion, high angle", BlockType.CAMERA),
    _block("detection_overlay", "Detection Overlay", "bounding boxes around {items}, tracking indicators, detection markers", BlockType.POSTFX),
    _block("timestamp_hud", "Timestamp HUD", "date and time overlay, camera ID, recording indicator", BlockType.POSTFX),
    _block("grainy_texture", "Grainy Texture", "video noise, compression artifacts, low resolution", BlockType.POSTFX),
    # MS Paint Screen
    _block("mspaint_interface", "MS Paint Interface", "Windows 95 Paint interface, visible toolbar, canvas area", BlockType.LAYOUT),
    _block("crude_drawing", "Crude Drawing", "amateur digital drawing of {subject}, shaky lines, basic shapes", BlockType.STYLE),
    _block("limited_palette", "Limited Palette", "16 color palette, default Windows colors, basic tones", BlockType.STYLE),
    _block("aliased_edges", "Aliased Edges", "no anti-aliasing, jagged edges, pixel-perfect lines", BlockType.POSTFX),
    # Character Creator Screen
    _block("ui_panels", "UI Panels", "game interface panels, menu windows, option boxes", BlockType.LAYOUT),
    _block("character_turntable", "Character Turntable", "{subject} character preview, rotating view, 3D model display", BlockType.SUBJECT),
    _block("customization_sliders", "Customization Sliders", "slider controls, adjustment bars, value indicators", BlockType.LAYOUT),
    _block("stat_display", "Stat Display", "character stats, attribute values, skill numbers", BlockType.LAYOUT),
    # IG Realistic UGC
    _block(
        "ig_story_base",
        "IG Story Base",
        "ultra-realistic handheld 9:16 vertical selfie, authentic IG-story style, slight motion blur, "
        "soft lo-fi texture, warm indoor lighting, photorealistic skin texture, natural imperfections, "
        "{ugc_realism}",
        BlockType.STYLE,
    ),
    _block(
        "ig_framing_selfie",
        "IG Selfie Framing",
        "close-up vertical selfie filling most of the story frame, camera very close to the face, "
        "imperfect handheld angle, relaxed casual pose, natural confident expression, direct eye contact",
        BlockType.CAMERA,
    ),
    _block(
        "ig_story_aesthetic",
        "IG Story Aesthetic",
        "IG-story realism, slightly variable exposure, shallow depth of field, subtle grain, "
        "softened smartphone edges, no cinematic polish, authentic phone camera quality",
        BlockType.POSTFX,
    ),
    _block(
        "ig_appearance_neutral",
        "IG Neutral Appearance",
        "photorealistic person, natural skin texture with pores and subtle imperfections, identity "
        "and features defined only by the reference image, no stylization",
        BlockType.SUBJECT,
    ),
    _block(
        "ig_accessory_details",
        "IG Accessory Details",
        "casual accessories as appropriate, natural clothing visible at the shoulders, softly blurred "
        "neutral indoor background, authentic ambient lighting",
        BlockType.SUBJECT,
    ),
    _block("no_text_stickers", "No Text/Stickers", "no on-screen text, no stickers, only the raw story-style selfie", BlockType.CONSTRAINT),
    _block("raw_story_only", "Raw Story Only", "authentic unedited story capture, no filters applied, no overlays", BlockType.CONSTRAINT),
]


DEFAULT_FILTERS: list[FilterDefinition] = [
    FilterDefinition(
        key="aesthetic_intensity",
        label="Aesthetic Intensity",
        schema=FilterSchema(options=["low", "medium", "high", "extreme"]),
        effect={
            "low": "subtle stylization",
            "medium": "moderate artistic enhancement",
            "high": "strong aesthetic treatment",
            "extreme": "maximum stylization, highly artistic",
        },
    ),
    FilterDefinition(
        key="ugc_realism",
        label="UGC Realism",
        schema=FilterSchema(options=["phone", "ugc", "pro", "cinematic"]),
        effect={
            "phone": "smartphone quality, casual snapshot",
            "ugc": "user generated content look, authentic amateur",
            "pro": "professional photography quality",
            "cinematic": "cinema camera quality, film look",
        },
    ),
    FilterDefinition(
        key="layout_entropy",
        label="Layout Entropy",
        schema=FilterSchema(options=["strict", "balanced", "loose"]),
        effect={
            "strict": "rigid composition, rule of thirds",
            "balanced": "harmonious arrangement, natural flow",
            "loose": "organic placement, creative chaos",
        },
    ),
    FilterDefinition(
        key="camera_bias",
        label="Camera Bias",
        schema=FilterSchema(options=["iphone", "cctv", "dslr", "camcorder_2000s", "modern"]),
        effect={
            "iphone": "iPhone camera characteristics, portrait mode",
            "cctv": "security camera look, fisheye distortion",
            "dslr": "professional DSLR quality, shallow depth of field",
            "camcorder_2000s": "early 2000s camcorder, SD quality",
            "modern": "modern mirrorless camera, crisp digital sensor",
        },
    ),
    FilterDefinition(
        key="temporal_style",
        label="Temporal Style",
        schema=FilterSchema(options=["y2k", "2000s_jp_tv", "modern", "retro_future"]),
        effect={
            "y2k": "Y2K aesthetic, early internet era",
            "2000s_jp_tv": "Japanese TV broadcast 2000s, variety show aesthetic",
            "modern": "contemporary clean aesthetic",
            "retro_future": "retrofuturism, vintage sci-fi",
        },
        is_premium=True,
    ),
    FilterDefinition(
        key="prompt_length",
        label="Prompt Length",
        schema=FilterSchema(options=["short", "normal", "long"]),
        effect={
            "short": "concise description",
            "normal": "standard detail level",
            "long": "extended detailed description",
        },
    ),
]


DEFAULT_BASE_MODELS: list[BaseModelDefinition] = [
    BaseModelDefinition(
        name="sdxl_1.0",
        display_name="Stable Diffusion XL 1.0",
        default_resolution=1024,
    ),
    BaseModelDefinition(
        name="flux_pro",
        display_name="Flux Pro",
        default_resolution=1024,
    ),
    BaseModelDefinition(
        name="sd_1.5",
        display_name="Stable Diffusion 1.5",
        default_resolution=512,
    ),
]
