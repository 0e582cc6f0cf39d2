"""Flag plugin modules.

Plugins here are loaded through `GUILD_FLAGS_PLUGINS` (for example
``guildflags.core.flag_plugins.static_flags:bootstrap``) instead of being
wired into the service directly.
"""
