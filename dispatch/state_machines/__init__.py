#Pure transition rules for rides and driver counters.
#No store access here; dispatch.lifecycle applies the results.
