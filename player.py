"""
Frame Player

Steps through training checkpoints on a timer, like a video player.

Everything runs on one thread. Ticks are queued on a sched.scheduler and
run() drains the queue. Pausing never cancels a queued tick; it bumps a
generation counter (timer_index) instead, and a tick that sees a newer
generation than the one it was started with returns without stepping or
rescheduling. Calling play() pauses first, so at most one generation of
ticks is ever live.
"""

import sched
import time

from config import CONFIG


class Player:
    """
    Timer-driven frame stepper.

    Usage:
        player = Player()
        player.on_tick(step)                 # step(count) advances frames
        player.on_play_pause(show_state)     # show_state(is_playing)
        player.play()
        player.run()                         # returns once paused
    """

    def __init__(self, interval=None, scheduler=None):
        self.interval = CONFIG["tick_interval"] if interval is None else interval
        self.scheduler = scheduler or sched.scheduler(time.monotonic, time.sleep)

        self.timer_index = 0
        self.is_playing = False
        self._callback = None
        self._step_func = None

    def on_play_pause(self, callback):
        self._callback = callback

    def on_tick(self, step_func):
        self._step_func = step_func

    def play_or_pause(self):
        if self.is_playing:
            self.pause()
        else:
            self.play()

    def play(self):
        # Invalidate any ticks still queued from an earlier play()
        self.pause()
        self.is_playing = True
        if self._callback:
            self._callback(self.is_playing)
        self._start(self.timer_index)

    def pause(self):
        self.timer_index += 1
        self.is_playing = False
        if self._callback:
            self._callback(self.is_playing)

    def _start(self, local_timer_index):
        def tick():
            if local_timer_index < self.timer_index:
                return  # superseded
            if self._step_func:
                self._step_func(1)
            # step_func may have paused the player
            if local_timer_index == self.timer_index:
                self.scheduler.enter(self.interval, 0, tick)

        self.scheduler.enter(self.interval, 0, tick)

    def run(self):
        """Process queued ticks until none are left."""
        self.scheduler.run()
