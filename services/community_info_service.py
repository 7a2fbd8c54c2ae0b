from __future__ import annotations

import discord


COMMUNITY_COLOUR = 0xF9A825

GENERAL_RULES = (
    (
        "🔹 Be Respectful – No hate speech, harassment, discrimination, or toxic behavior.",
        "This is a no-brainer. Be kind to each other.",
    ),
    (
        "🔹 No Spam or Flooding – Avoid repeated messages, excessive caps, or meaningless content.",
        "Keep the chat clean and avoid annoying people.",
    ),
    (
        "🔹 Follow Discord & Minecraft TOS – Violating these may lead to punishment.",
        "This includes Minecraft's EULA and Discord's TOS.",
    ),
    (
        "🔹 Keep It SFW – No NSFW, offensive memes, or inappropriate usernames.",
        "Keep the server family-friendly.",
    ),
    (
        "🔹 Use the Correct Channels – Post appropriately (e.g., don't drop memes in 🚨・support).",
        "Use the correct channels to avoid spamming.",
    ),
)

CHAT_RULES = (
    ("💬 Stay On Topic – Keep convos relevant to the channel.", "Keep the chat clean and avoid derailing conversations."),
    (
        "🚫 No Advertising or Server Promotion – This includes in chat, DMs, or Minecraft.",
        "No self-promotion allowed.",
    ),
    ("⏱️ Report in Time – All issues must be reported within 2 days of occurrence.", "Report any issues in time."),
    (
        "🎖️ Respect Staff – Staff are here to help! Contact them respectfully via 😤・complains.",
        "Be respectful to staff and contact them via the correct channels.",
    ),
    (
        "🧠 No Heated Topics – Avoid politics, religion, or controversial subjects unless staff allows.",
        "Avoid heated topics unless staff explicitly allows it.",
    ),
    ("🗣️ English or Hinglish Only – So everyone can understand.", "Speak in English or Hinglish to avoid confusion."),
    ("🔔 Avoid Random Pings – Tag only when necessary.", "Only tag when necessary to avoid spamming."),
    ("🧾 File Complaints Privately – Use unknown to open a ticket.", "File complaints privately."),
    (
        "😄 Playful Banter is Cool – Double meanings are fine, just don't cross the line.",
        "Playful banter is cool, but don't cross the line.",
    ),
    ("🤬 Swearing is Okay – But don't go overboard or direct it at anyone.", "Swearing is okay, but don't go overboard."),
)

MEDIA_RULES = (
    ("📸 Post Relevant Content Only – No off-topic images or random spam.", "Post relevant content only."),
    ("🧾 Respect Copyright – Share only content you own or have rights to.", "Respect copyright laws."),
    ("🚫 No NSFW or Shock Media – Keep everything safe and friendly.", "Keep the server family-friendly."),
    ("🎨 Credit Creators – Always credit when sharing artwork, edits, or videos.", "Credit creators when sharing their work."),
    ("📤 Don't Flood Channels – Avoid posting tons of images all at once.", "Don't flood channels."),
)


def connection_info_embed(java_address: str, bedrock_port: int, bedrock_address: str) -> discord.Embed:
    embed = discord.Embed(
        title="🎮 BitCraft Server Connection Info",
        description="Connect to our Minecraft server using the following details:",
        colour=COMMUNITY_COLOUR,
    )
    embed.add_field(name="🌐 Server Address (JAVA)", value=f"```{java_address}```", inline=True)
    embed.add_field(name="🛠️ Port (BEDROCK)", value=f"```{bedrock_port}```", inline=False)
    embed.add_field(name="🌐 Server Address (BEDROCK)", value=f"```{bedrock_address}```", inline=False)
    embed.set_footer(text="Simply copy the server address and paste it in your Minecraft client!")
    return embed


def _rules_embed(title: str, description: str, rules: tuple[tuple[str, str], ...]) -> discord.Embed:
    embed = discord.Embed(title=title, description=description, colour=COMMUNITY_COLOUR)
    for name, value in rules:
        embed.add_field(name=name, value=value, inline=False)
    return embed


def rules_embeds() -> list[discord.Embed]:
    return [
        _rules_embed(
            "🔧・General Rules",
            "Please follow these rules to ensure a positive experience for everyone:",
            GENERAL_RULES,
        ),
        _rules_embed("💬・Chat Rules", "Follow these rules to keep the chat clean and enjoyable:", CHAT_RULES),
        _rules_embed("📷・Media Sharing Rules", "Follow these rules when sharing media:", MEDIA_RULES),
    ]
