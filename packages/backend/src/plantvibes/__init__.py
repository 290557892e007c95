"""PlantVibes — real-time backend for plants, users and vibrations.

Vibrations are audio recordings tagged to plants and locations. This
package carries the live-update layer: database change notifications
are translated into typed envelopes and pushed to every connected
WebSocket client.
"""

__version__ = "0.1.0"
