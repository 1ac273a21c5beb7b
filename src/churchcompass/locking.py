import threading

# Ein Schreiber gleichzeitig: jede Lesen→Rechnen→Schreiben-Folge läuft unter diesem Lock.
write_lock = threading.RLock()
