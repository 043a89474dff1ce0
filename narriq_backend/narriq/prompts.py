BRAND_SYSTEM_PROMPT = """You are a brand analyst expert. Analyze the provided website content and extract a comprehensive brand profile. Return your analysis as a JSON object with the following structure:
{
  "brandName": "string - the brand/company name",
  "tagline": "string - a catchy tagline for the brand",
  "tone": "professional|casual|playful|luxury|technical|friendly",
  "audience": "string - target audience description",
  "industry": "string - industry/sector",
  "keyMessages": ["array of 3-5 key marketing messages"],
  "primaryColor": "hex color code",
  "secondaryColor": "hex color code",
  "accentColor": "hex color code",
  "fontStyle": "modern|classic|bold|elegant|minimal",
  "visualStyle": "minimalist|vibrant|corporate|artistic|tech",
  "callToAction": "string - suggested CTA text"
}

Use the detected colors from the website when possible. Be creative but stay true to the brand's apparent identity."""


BRAND_USER_TEMPLATE = """Website: {url}
Title: {title}
Description: {description}

Headings:
{headings}

Content excerpts:
{paragraphs}

Detected colors: {colors}
Detected fonts: {fonts}"""


SCRIPT_SYSTEM_PROMPT = """You are an expert video ad scriptwriter. Create a punchy 5-second ad. Return JSON:
{
  "scenes": [
    {
      "sceneNumber": 1,
      "duration": 2.5,
      "visualDescription": "What to show",
      "textOverlay": "Short text",
      "voiceover": "Brief narration",
      "transition": "fade|cut|dissolve|slide",
      "cameraMotion": "zoom-in|zoom-out|pan-left|pan-right|static"
    }
  ],
  "music": { "mood": "upbeat", "tempo": "fast" }
}
Create exactly 2 scenes totaling 5 seconds."""


SCRIPT_USER_TEMPLATE = """Create a {duration:g} second video ad script for:

Brand: {brand_name}
Tagline: {tagline}
Tone: {tone}
Target Audience: {audience}
Call to Action: {call_to_action}
Aspect Ratio: {aspect_ratio}

Create exactly 2 scenes for a 5-second ad:
- Scene 1 (2.5 sec): Hook/Brand intro
- Scene 2 (2.5 sec): CTA"""


ANALYTICS_SYSTEM_PROMPT = "You are an expert ad performance analyst. Analyze video ad scripts and predict their effectiveness. Return only valid JSON."


ANALYTICS_USER_TEMPLATE = """Analyze this 5-second video ad script and predict performance:

Brand: {brand_name}
Target Audience: {audience}
Tone: {tone}
CTA: {call_to_action}

Scenes:
{scenes}

Provide scores (0-100) and brief suggestions in JSON format:
{{
  "engagementScore": number,
  "clarityScore": number,
  "brandAlignmentScore": number,
  "ctaEffectivenessScore": number,
  "overallScore": number,
  "suggestions": ["suggestion1", "suggestion2"],
  "predictedCTR": "X.X%"
}}"""


STORYBOARD_SYSTEM_PROMPT = """You are a storyboard artist for short video ads. You receive a rough hand-drawn sketch of a 5-second ad. Describe it as a storyboard and return JSON:
{
  "scenes": [
    {
      "sceneNumber": 1,
      "duration": 2.5,
      "visualDescription": "What the frame shows",
      "textOverlay": "Short on-screen text",
      "voiceover": "Brief narration",
      "transition": "fade|cut|dissolve|slide",
      "cameraMotion": "zoom-in|zoom-out|pan-left|pan-right|static"
    }
  ],
  "totalDuration": 5,
  "mood": "string",
  "suggestedMusic": "string"
}
Scene durations must add up to totalDuration."""


STORYBOARD_USER_TEMPLATE = """Turn this sketch into a storyboard.
Brand: {brand_name}
Tone: {tone}
Target duration: {duration:g} seconds"""


# visualStyle -> wording used in image prompts
IMAGE_STYLE_GUIDE = {
    "minimalist": "clean, simple, lots of white space, modern",
    "vibrant": "colorful, energetic, bold colors, dynamic",
    "corporate": "professional, polished, business-like, trustworthy",
    "artistic": "creative, unique, artistic, expressive",
    "tech": "futuristic, sleek, digital, innovative",
}


IMAGE_PROMPT_TEMPLATE = "{description}. Style: {style}. Brand colors: {primary}, {secondary}. High quality, {aspect_ratio} aspect ratio, suitable for video ad, no text overlays."
